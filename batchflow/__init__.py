#
# Licensed to the Apache Software Foundation (ASF) under one or more
# contributor license agreements.  See the NOTICE file distributed with
# this work for additional information regarding copyright ownership.
# The ASF licenses this file to You under the Apache License, Version 2.0
# (the "License"); you may not use this file except in compliance with
# the License.  You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

"""
batchflow
=========

batchflow is a deferred-execution framework for batch data pipelines.

Overview
--------
The key concepts in this programming model are

* :class:`~batchflow.pvalue.PCollection`: a lazily computed collection of
  records. A :class:`~batchflow.pvalue.PTable` holds ``(key, value)``
  records.
* :class:`~batchflow.transforms.ptransform.PTransform`: a computation
  turning collections into collections. Applying one only adds nodes to an
  operator graph.
* :class:`~batchflow.pipeline.Pipeline`: owns the operator graph; running it
  plans the pending outputs into fused job stages.
* :class:`~batchflow.runners.runner.Backend`: executes job stages, for
  example locally on a thread pool.
* :class:`~batchflow.transforms.core.ParallelDoOptions`: declares the side
  inputs an element-wise step reads in full, as used by
  :func:`~batchflow.transforms.join.mapside_join`.

Typical usage
-------------
At the top of your source file::

  import batchflow

After this import statement

* Transform classes are available as
  :class:`batchflow.FlatMap <batchflow.transforms.core.FlatMap>`,
  :class:`batchflow.GroupByKey <batchflow.transforms.core.GroupByKey>`, etc.
* Pipeline class is available as
  :class:`batchflow.Pipeline <batchflow.pipeline.Pipeline>`
* Sources and targets are available as
  :class:`batchflow.io.TextFileSource <batchflow.io.sources.TextFileSource>`,
  :class:`batchflow.io.TextFileTarget <batchflow.io.sources.TextFileTarget>`.
"""

# pylint: disable=wrong-import-position
import batchflow.internal.pickler

from batchflow import io
from batchflow import typehints
from batchflow import version
from batchflow.pipeline import Pipeline
from batchflow.transforms import *
from batchflow.pvalue import PCollection
from batchflow.pvalue import PGroupedTable
from batchflow.pvalue import PTable

# pylint: enable=wrong-import-position

__version__ = version.__version__
