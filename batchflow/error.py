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

"""Batchflow error classes."""


class BatchflowError(Exception):
  """Base class for all batchflow errors."""


class PipelineError(BatchflowError):
  """An error in the pipeline object (e.g. a PValue not linked to it)."""


class PipelineStateError(PipelineError):
  """An operation that is not permitted in the pipeline's current state."""


class PValueError(BatchflowError):
  """An error related to a PValue object (e.g. value is not computed)."""


class TransformError(BatchflowError):
  """An error in the construction of a transform (e.g. unpicklable fn)."""


class PlanningError(BatchflowError):
  """The operator graph cannot be lowered to job stages.

  Raised for cyclic graphs and for side inputs that cannot be resolved to a
  finite materializable collection. Always raised before anything is
  submitted to a backend.
  """


class UnsupportedBackendError(BatchflowError):
  """The backend lacks a capability that an operation requires."""


class PipelineExecutionError(BatchflowError, RuntimeError):
  """A job stage failed while the backend was executing it.

  The original exception is chained as ``__cause__``.
  """
  def __init__(self, message, stage_name=None):
    super().__init__(message)
    self.stage_name = stage_name
