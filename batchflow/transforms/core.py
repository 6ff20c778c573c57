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

"""Core transforms: element-wise steps, grouping, combining and I/O.

Besides the transforms, this module holds the user-function classes they
carry (:class:`DoFn`, :class:`CombineFn`) and :class:`ParallelDoOptions`,
the side-input declaration attached to an element-wise step.
"""

# pytype: skip-file

import logging
import types
from typing import FrozenSet
from typing import Iterable
from typing import Mapping

from batchflow import pvalue
from batchflow import typehints
from batchflow.error import PValueError
from batchflow.error import TransformError
from batchflow.graph import NodeKind
from batchflow.internal import pickler
from batchflow.io.sources import InMemorySource
from batchflow.io.sources import Source
from batchflow.io.sources import Target
from batchflow.transforms.ptransform import PTransform
from batchflow.transforms.ptransform import label_from_callable

__all__ = [
    'DoFn',
    'DoFnContext',
    'CallableWrapperDoFn',
    'MapFn',
    'FilterFn',
    'CombineFn',
    'CallableWrapperCombineFn',
    'ParallelDoOptions',
    'ParallelDo',
    'Map',
    'FlatMap',
    'Filter',
    'GroupByKey',
    'CombineValues',
    'Union',
    'Join',
    'Read',
    'Create',
    'WriteTo',
]

_LOGGER = logging.getLogger(__name__)


class ParallelDoOptions(object):
  """Per-step settings of an element-wise transform.

  The one recognized setting is ``source_targets``: the sources that must be
  fully materialized and broadcast to every partition before the step
  processes its first element. Instances are immutable.

  Example Usage::

    options = ParallelDoOptions.builder().source_targets(lookup).build()
    table.parallel_do('Enrich', EnrichFn(lookup), options=options)
  """

  __slots__ = ('_source_targets', )

  def __init__(self, source_targets=()):
    # type: (Iterable[Source]) -> None
    source_targets = frozenset(source_targets)
    for source in source_targets:
      if not isinstance(source, Source):
        raise TypeError('Expected a Source instead of: %r' % (source, ))
    object.__setattr__(self, '_source_targets', source_targets)

  @property
  def source_targets(self):
    # type: () -> FrozenSet[Source]
    return self._source_targets

  @classmethod
  def of(cls, *source_targets):
    return cls(source_targets)

  @classmethod
  def builder(cls):
    return _ParallelDoOptionsBuilder()

  def __setattr__(self, name, value):
    raise AttributeError('ParallelDoOptions is immutable.')

  def __eq__(self, other):
    return (
        isinstance(other, ParallelDoOptions) and
        self._source_targets == other._source_targets)

  def __hash__(self):
    return hash(self._source_targets)

  def __reduce__(self):
    return ParallelDoOptions, (tuple(self._source_targets), )

  def __repr__(self):
    return 'ParallelDoOptions(source_targets=%s)' % sorted(
        s.display_name() for s in self._source_targets)


class _ParallelDoOptionsBuilder(object):
  def __init__(self):
    self._source_targets = set()

  def source_targets(self, *source_targets):
    self._source_targets.update(source_targets)
    return self

  def build(self):
    return ParallelDoOptions(self._source_targets)


_EMPTY_OPTIONS = ParallelDoOptions()


class DoFnContext(object):
  """Gives a DoFn access to its partition and its side inputs.

  Attributes:
    label: label of the step the DoFn belongs to.
    partition_index: index of the partition being processed.
    num_partitions: number of partitions of the job stage.
  """
  def __init__(self, label, partition_index, num_partitions, side_inputs):
    # type: (str, int, int, Mapping[Source, tuple]) -> None
    self.label = label
    self.partition_index = partition_index
    self.num_partitions = num_partitions
    self._side_inputs = side_inputs

  def side_input(self, source):
    # type: (Source) -> tuple

    """Returns every record of a declared side input.

    Raises:
      PValueError: if the step did not declare source as a side input.
    """
    try:
      return self._side_inputs[source]
    except KeyError:
      raise PValueError(
          '%s is not a declared side input of %s.' %
          (source.display_name(), self.label))


class DoFn(object):
  """A function object used by an element-wise transform.

  Subclasses must override :meth:`process`, which yields zero or more
  outputs for each input element. Each partition of a job stage works on
  its own copy of the DoFn, so instance state is never shared between
  partitions.
  """
  def default_label(self):
    return self.__class__.__name__

  def setup(self):
    """Called to prepare an instance for processing a partition."""
    pass

  def start_bundle(self, context):
    """Called before the first element of a partition is processed.

    Args:
      context: a :class:`DoFnContext`; side inputs are read through it.
    """
    pass

  def process(self, element):
    """Yields the outputs for one input element."""
    raise NotImplementedError

  def finish_bundle(self):
    """Called after the last element of a partition. May yield outputs."""
    pass

  def teardown(self):
    """Called to clean up this instance before it is discarded."""
    pass


class CallableWrapperDoFn(DoFn):
  """For internal use only; no backwards-compatibility guarantees.

  A DoFn (function) object wrapping a callable that returns an iterable of
  outputs for each element.
  """
  def __init__(self, fn):
    """Initializes a CallableWrapperDoFn object wrapping a callable.

    Args:
      fn: A callable object.

    Raises:
      TypeError: if fn parameter is not a callable type.
    """
    if not callable(fn):
      raise TypeError('Expected a callable object instead of: %r' % fn)

    self._fn = fn
    if isinstance(
        fn, (types.BuiltinFunctionType, types.MethodType, types.FunctionType)):
      self.process = fn
    else:
      # For cases such as set / list where fn is callable but not a function
      self.process = lambda element: fn(element)

    super().__init__()

  def default_label(self):
    return label_from_callable(self._fn)

  def __repr__(self):
    return 'CallableWrapperDoFn(%s)' % self._fn


class CombineFn(object):
  """A function object used by a combine step to reduce the values of a key.

  The combining process proceeds as follows:

  1. create_accumulator creates a fresh accumulator for a key.
  2. add_input folds each value of the key into the accumulator.
  3. merge_accumulators combines accumulators built from separate batches.
  4. extract_output turns the final accumulator into the output value.
  """
  def default_label(self):
    return self.__class__.__name__

  def create_accumulator(self):
    raise NotImplementedError(str(self))

  def add_input(self, mutable_accumulator, element):
    raise NotImplementedError(str(self))

  def add_inputs(self, mutable_accumulator, elements):
    for element in elements:
      mutable_accumulator = self.add_input(mutable_accumulator, element)
    return mutable_accumulator

  def merge_accumulators(self, accumulators):
    raise NotImplementedError(str(self))

  def extract_output(self, accumulator):
    raise NotImplementedError(str(self))

  def apply(self, elements):
    """Returns result of applying this CombineFn to the input values."""
    return self.extract_output(
        self.add_inputs(self.create_accumulator(), elements))

  @staticmethod
  def maybe_from_callable(fn):
    if isinstance(fn, CombineFn):
      return fn
    elif callable(fn):
      return CallableWrapperCombineFn(fn)
    else:
      raise TypeError('Expected a CombineFn or callable, got %r' % fn)


class CallableWrapperCombineFn(CombineFn):
  """For internal use only; no backwards-compatibility guarantees.

  A CombineFn (function) object wrapping a callable object that reduces an
  iterable of values to a single value (like the builtins sum and max).
  """
  _DEFAULT_BUFFER_SIZE = 10

  def __init__(self, fn, buffer_size=_DEFAULT_BUFFER_SIZE):
    if not callable(fn):
      raise TypeError('Expected a callable object instead of: %r' % fn)

    super().__init__()
    self._fn = fn
    self._buffer_size = buffer_size

  def default_label(self):
    return label_from_callable(self._fn)

  def __repr__(self):
    return "%s(%s)" % (self.__class__.__name__, self._fn)

  def create_accumulator(self):
    return []

  def add_input(self, accumulator, element):
    accumulator.append(element)
    if len(accumulator) > self._buffer_size:
      accumulator = [self._fn(accumulator)]
    return accumulator

  def merge_accumulators(self, accumulators):
    return [self._fn([v for acc in accumulators for v in acc])]

  def extract_output(self, accumulator):
    return self._fn(accumulator)


def _check_picklable(fn, label):
  """Fails early for functions that cannot be shipped to partitions."""
  try:
    pickler.roundtrip(fn)
  except Exception as e:
    raise TransformError(
        'The function of %s cannot be serialized: %s' % (label, e)) from e


def _ensure_table(pcoll, transform):
  if not isinstance(pcoll, pvalue.PTable):
    raise TransformError(
        '%s requires a keyed PTable input, got %r.' % (transform.label, pcoll))


class ParallelDo(PTransform):
  """Applies a :class:`DoFn` to every element of a collection.

  Args:
    fn: the DoFn to apply.
    ptype: record type of the output; a table type yields a PTable.
    options: a :class:`ParallelDoOptions` declaring side inputs.
  """
  def __init__(self, fn, ptype=None, options=None, label=None):
    super().__init__(label)
    if not isinstance(fn, DoFn):
      raise TypeError('ParallelDo must be called with a DoFn instance.')
    if options is not None and not isinstance(options, ParallelDoOptions):
      raise TypeError('Expected ParallelDoOptions instead of: %r' % options)
    self.fn = fn
    self.ptype = ptype
    self.options = options or _EMPTY_OPTIONS
    _check_picklable(fn, self.label)

  def default_label(self):
    return '%s(%s)' % (self.__class__.__name__, self.fn.default_label())

  def expand(self, pcoll):
    node = pcoll.pipeline._add_node(
        NodeKind.ELEMENTWISE, [pcoll],
        fn=self.fn,
        options=self.options,
        ptype=self.ptype or typehints.anys())
    return pvalue.output_of(pcoll.pipeline, node)


class MapFn(CallableWrapperDoFn):
  def __init__(self, fn):
    super().__init__(fn)
    self.process = lambda element: [fn(element)]


class FilterFn(CallableWrapperDoFn):
  def __init__(self, fn):
    super().__init__(fn)
    self.process = lambda element: [element] if fn(element) else []


class FlatMap(ParallelDo):
  """Applies a callable returning an iterable to each element.

  Every item of the returned iterable becomes an output element.
  """
  def __init__(self, fn, ptype=None, options=None, label=None):
    self._callable = fn
    super().__init__(
        CallableWrapperDoFn(fn), ptype=ptype, options=options, label=label)

  def default_label(self):
    return '%s(%s)' % (
        self.__class__.__name__, label_from_callable(self._callable))


class Map(FlatMap):
  """Applies a callable to each element, emitting exactly one output."""
  def __init__(self, fn, ptype=None, options=None, label=None):
    self._callable = fn
    ParallelDo.__init__(
        self, MapFn(fn), ptype=ptype, options=options, label=label)


class _NamedFlatMap(FlatMap):
  """A FlatMap with a fixed generated label, used by the collection helpers."""
  def __init__(self, name, fn, ptype=None):
    self._name = name
    super().__init__(fn, ptype=ptype)

  def default_label(self):
    return self._name


class _NamedMap(Map):
  def __init__(self, name, fn, ptype=None):
    self._name = name
    super().__init__(fn, ptype=ptype)

  def default_label(self):
    return self._name


class Filter(FlatMap):
  """Keeps the elements for which a predicate holds."""
  def __init__(self, fn, ptype=None, label=None):
    self._callable = fn
    ParallelDo.__init__(self, FilterFn(fn), ptype=ptype, label=label)

  def expand(self, pcoll):
    if self.ptype is None:
      self.ptype = pcoll.ptype
    return super().expand(pcoll)


class GroupByKey(PTransform):
  """Groups the values of a keyed table by key.

  This is a reshuffle of the whole table, so it always starts a new job
  stage.
  """
  def expand(self, pcoll):
    _ensure_table(pcoll, self)
    ptype = pcoll.ptype
    if ptype.is_table:
      ptype = typehints.grouped_table_of(ptype.key_type, ptype.value_type)
    else:
      ptype = typehints.grouped_table_of(typehints.anys(), typehints.anys())
    node = pcoll.pipeline._add_node(NodeKind.GROUP_BY_KEY, [pcoll], ptype=ptype)
    return pvalue.PGroupedTable(pcoll.pipeline, node.node_id, ptype)


class CombineValues(PTransform):
  """Reduces the grouped values of each key to a single value."""
  def __init__(self, fn, ptype=None, label=None):
    super().__init__(label)
    self.fn = CombineFn.maybe_from_callable(fn)
    self.ptype = ptype
    _check_picklable(self.fn, self.label)

  def default_label(self):
    return '%s(%s)' % (self.__class__.__name__, self.fn.default_label())

  def expand(self, grouped):
    if not isinstance(grouped, pvalue.PGroupedTable):
      raise TransformError(
          '%s requires a grouped table input, got %r.' % (self.label, grouped))
    ptype = self.ptype or typehints.table_of(
        grouped.ptype.key_type, grouped.ptype.value_type)
    node = grouped.pipeline._add_node(
        NodeKind.COMBINE, [grouped], fn=self.fn, ptype=ptype)
    return pvalue.PTable(grouped.pipeline, node.node_id, ptype)


class Union(PTransform):
  """Merges several collections of the same record type into one."""
  def expand(self, pcolls):
    pcolls = tuple(pcolls)
    if not pcolls:
      raise TransformError('%s needs at least one input.' % self.label)
    pipeline = pcolls[0].pipeline
    node = pipeline._add_node(NodeKind.UNION, pcolls, ptype=pcolls[0].ptype)
    return pvalue.output_of(pipeline, node)


class Join(PTransform):
  """Inner join of two keyed tables through a shuffle of both sides.

  Emits ``(k, (left_value, right_value))`` for every pair of values sharing
  the key ``k``. Works on every backend; see
  :func:`batchflow.transforms.join.mapside_join` for the broadcast variant.
  """
  def expand(self, pcolls):
    left, right = pcolls
    _ensure_table(left, self)
    _ensure_table(right, self)
    ptype = typehints.table_of(
        left.ptype.key_type,
        typehints.pairs(left.ptype.value_type, right.ptype.value_type))
    node = left.pipeline._add_node(NodeKind.JOIN, [left, right], ptype=ptype)
    return pvalue.PTable(left.pipeline, node.node_id, ptype)


class Read(PTransform):
  """Reads the records of a :class:`Source`."""
  def __init__(self, source, label=None):
    super().__init__(label)
    if not isinstance(source, Source):
      raise TypeError('Expected a Source instead of: %r' % (source, ))
    self.source = source

  def default_label(self):
    return 'Read(%s)' % self.source.display_name()

  def expand(self, pbegin):
    node = pbegin.pipeline._add_node(
        NodeKind.SOURCE_READ, (), source=self.source, ptype=self.source.ptype)
    return pvalue.output_of(pbegin.pipeline, node)


class Create(Read):
  """Reads an in-memory sequence of values."""
  def __init__(self, values, ptype=None, label=None):
    super().__init__(InMemorySource(values, ptype), label)

  def default_label(self):
    return 'Create'


class WriteTo(PTransform):
  """Writes the records of a collection to a :class:`Target`."""
  def __init__(self, target, label=None):
    super().__init__(label)
    if not isinstance(target, Target):
      raise TypeError('Expected a Target instead of: %r' % (target, ))
    self.target = target

  def default_label(self):
    return 'Write(%s)' % self.target.display_name()

  def expand(self, pcoll):
    node = pcoll.pipeline._add_node(
        NodeKind.SINK_WRITE, [pcoll], target=self.target, ptype=pcoll.ptype)
    return pvalue.PDone(pcoll.pipeline, node.node_id, self.target)
