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

"""PValue, PCollection, PTable: handles to nodes of an operator graph.

A PValue belongs to a pipeline and refers to the graph node that computes
it. Operations on a collection never run anything: each one adds a node to
the pipeline's operator graph and returns a handle to the new node.
"""

# pytype: skip-file

from typing import TYPE_CHECKING
from typing import Dict
from typing import List

from batchflow import typehints
from batchflow.graph import NodeKind

if TYPE_CHECKING:
  from batchflow.pipeline import Pipeline

__all__ = [
    'PValue',
    'PBegin',
    'PCollection',
    'PTable',
    'PGroupedTable',
    'PDone',
]


class PValue(object):
  """Base class for PCollection.

  Users should not construct PValue objects directly in their pipelines.

  A PValue has the following main characteristics:
    (1) Belongs to a pipeline. Added during object initialization.
    (2) Refers to the graph node that can compute the value if executed.
  """
  def __init__(self, pipeline, node_id=None, ptype=None):
    # type: (Pipeline, int, typehints.PType) -> None
    self.pipeline = pipeline
    self.node_id = node_id
    self.ptype = ptype or typehints.anys()

  @property
  def producer(self):
    return self.pipeline.graph.node(self.node_id)

  @property
  def label(self):
    return self.producer.label

  def __str__(self):
    return self._str_internal()

  def __repr__(self):
    return '<%s at %s>' % (self._str_internal(), hex(id(self)))

  def _str_internal(self):
    return "%s[%s]" % (
        self.__class__.__name__,
        self.label if self.node_id is not None else None)

  def apply(self, *args, **kwargs):
    """Applies a transform to a PValue.

    The method will insert the pvalue as the next argument following an
    optional first label and a transform object.
    """
    arglist = list(args)
    arglist.insert(1, self)
    return self.pipeline.apply(*arglist, **kwargs)

  def __or__(self, ptransform):
    return self.pipeline.apply(ptransform, self)

  def __reduce_ex__(self, unused_version):
    # Collections are often picked up implicitly by closures; they are
    # meaningless on a partition, so unpickle to a placeholder.
    return _InvalidUnpicklableCollection, ()


class _InvalidUnpicklableCollection(object):
  pass


class PBegin(PValue):
  """A pipeline begin marker used as input to create/read transforms."""
  def _str_internal(self):
    return 'PBegin'


class PDone(PValue):
  """The result of a write: refers to the sink-write node."""
  def __init__(self, pipeline, node_id, target):
    super().__init__(pipeline, node_id)
    self.target = target


class PCollection(PValue):
  """A lazily computed, possibly very large, collection of records.

  Users should not construct PCollection objects directly in their
  pipelines; they come from :meth:`Pipeline.read` and from the operations
  below.
  """
  def parallel_do(self, label, fn, ptype=None, options=None):
    """Applies a DoFn to every element.

    Args:
      label: label of the step, or None for a generated one.
      fn: the :class:`~batchflow.transforms.core.DoFn` to apply.
      ptype: record type of the output. A table type makes the result a
        :class:`PTable`.
      options: a :class:`~batchflow.transforms.core.ParallelDoOptions`
        declaring the sources the step reads as side inputs.
    """
    from batchflow.transforms.core import ParallelDo
    return self.pipeline.apply(
        ParallelDo(fn, ptype=ptype, options=options), self, label)

  def map(self, fn, ptype=None, label=None):
    from batchflow.transforms.core import Map
    return self.pipeline.apply(Map(fn, ptype=ptype), self, label)

  def flat_map(self, fn, ptype=None, label=None):
    from batchflow.transforms.core import FlatMap
    return self.pipeline.apply(FlatMap(fn, ptype=ptype), self, label)

  def filter(self, fn, label=None):
    from batchflow.transforms.core import Filter
    return self.pipeline.apply(Filter(fn), self, label)

  def by(self, key_fn, key_ptype=None, label=None):
    """Returns a table of ``(key_fn(element), element)`` pairs."""
    from batchflow.transforms.core import _NamedMap
    ptype = typehints.table_of(key_ptype or typehints.anys(), self.ptype)
    return self.pipeline.apply(
        _NamedMap(
            'By(%s)' % getattr(key_fn, '__name__', 'key_fn'),
            lambda element: (key_fn(element), element),
            ptype=ptype),
        self,
        label)

  def union(self, *others, label=None):
    from batchflow.transforms.core import Union
    return self.pipeline.apply(Union(), (self, ) + others, label)

  def write(self, target, label=None):
    """Writes this collection to target when the pipeline runs."""
    return self.pipeline.write(self, target, label)

  def materialize(self):
    # type: () -> List

    """Runs the pipeline as needed and returns every record of this collection.
    """
    return self.pipeline.materialize(self)

  def as_side_input(self):
    """Returns a finite source holding this collection, for use as a side input.

    A collection read directly from a source is represented by that source.
    Anything else is written to an intermediate output of the pipeline when
    a step depending on it runs. Declare the returned source in the step's
    ParallelDoOptions and read it through ``DoFnContext.side_input``.
    """
    return self.pipeline._side_input_source(self)


class PTable(PCollection):
  """A collection of ``(key, value)`` records."""
  def group_by_key(self, label=None):
    from batchflow.transforms.core import GroupByKey
    return self.pipeline.apply(GroupByKey(), self, label)

  def join(self, other, label=None):
    """Inner join with other through a shuffle of both tables."""
    from batchflow.transforms.core import Join
    return self.pipeline.apply(Join(), (self, other), label)

  def keys(self, label=None):
    from batchflow.transforms.core import _NamedMap
    return self.pipeline.apply(
        _NamedMap(
            'Keys',
            lambda kv: kv[0],
            ptype=getattr(self.ptype, 'key_type', None)),
        self,
        label)

  def values(self, label=None):
    from batchflow.transforms.core import _NamedMap
    return self.pipeline.apply(
        _NamedMap(
            'Values',
            lambda kv: kv[1],
            ptype=getattr(self.ptype, 'value_type', None)),
        self,
        label)

  def map_values(self, fn, value_ptype=None, label=None):
    from batchflow.transforms.core import _NamedMap
    key_ptype = getattr(self.ptype, 'key_type', typehints.anys())
    return self.pipeline.apply(
        _NamedMap(
            'MapValues(%s)' % getattr(fn, '__name__', 'fn'),
            lambda kv: (kv[0], fn(kv[1])),
            ptype=typehints.table_of(
                key_ptype, value_ptype or typehints.anys())),
        self,
        label)

  def materialize_to_map(self):
    # type: () -> Dict

    """Runs the pipeline as needed; returns a dict of key to list of values."""
    result = {}
    for key, value in self.materialize():
      result.setdefault(key, []).append(value)
    return result


class PGroupedTable(PTable):
  """A table of ``(key, [values])`` records produced by a group-by-key."""
  def combine_values(self, fn, label=None):
    """Reduces the values of each key with a CombineFn or a callable."""
    from batchflow.transforms.core import CombineValues
    return self.pipeline.apply(CombineValues(fn), self, label)

  def ungroup(self, label=None):
    from batchflow.transforms.core import _NamedFlatMap
    ptype = typehints.table_of(self.ptype.key_type, self.ptype.value_type)
    return self.pipeline.apply(
        _NamedFlatMap(
            'Ungroup',
            lambda kvs: [(kvs[0], v) for v in kvs[1]],
            ptype=ptype),
        self,
        label)


def output_of(pipeline, node):
  """Returns the handle class matching the record type of a new node."""
  ptype = node.ptype or typehints.anys()
  if isinstance(ptype, typehints.PGroupedTableType):
    return PGroupedTable(pipeline, node.node_id, ptype)
  elif ptype.is_table:
    return PTable(pipeline, node.node_id, ptype)
  elif node.kind == NodeKind.SINK_WRITE:
    return PDone(pipeline, node.node_id, node.target)
  return PCollection(pipeline, node.node_id, ptype)
