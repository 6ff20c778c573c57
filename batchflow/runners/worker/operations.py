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

"""Executes one job stage, partition by partition.

A :class:`StageRunner` resolves the stage's side inputs once, computes the
records feeding the stage's root and then runs one chain of operations per
partition. Each partition deserializes its own copies of the user functions,
so partitions never share mutable state. Results are committed only after
every partition has succeeded.
"""

# pytype: skip-file

import functools
import itertools
import logging
import types
from typing import Dict
from typing import List
from typing import Tuple

import objsize

from batchflow.graph import NodeKind
from batchflow.internal import pickler
from batchflow.internal.util import partition
from batchflow.runners.worker import shuffle
from batchflow.transforms.core import DoFnContext

__all__ = ['StageRunner', 'StageCancelled']

_LOGGER = logging.getLogger(__name__)

_MB = 1 << 20

# Root kinds whose node output is what the backend feeds into the stage.
_READ_ROOT_KINDS = frozenset(
    [NodeKind.SOURCE_READ, NodeKind.GROUP_BY_KEY, NodeKind.JOIN, NodeKind.UNION])


class StageCancelled(Exception):
  """Raised inside a stage whose cancellation was requested."""


class Operation(object):
  """An operation of a fused stage, connected to downstream receivers."""
  def __init__(self, name, debug=False):
    self.name = name
    self.debug_logging_enabled = debug
    self.receivers = []  # type: List[Operation]

  def add_receiver(self, receiver):
    self.receivers.append(receiver)

  def setup(self):
    pass

  def start(self):
    pass

  def process(self, o):
    pass

  def finish(self):
    pass

  def teardown(self):
    pass

  def output(self, o):
    for receiver in self.receivers:
      receiver.process(o)

  def __str__(self):
    return '<%s %s>' % (self.__class__.__name__, self.name)


class ReadOperation(Operation):
  """Emits the records of one partition when started."""
  def __init__(self, name, read, cancel_event, debug=False):
    super().__init__(name, debug)
    self._read = read
    self._cancel_event = cancel_event

  def start(self):
    for record in self._read():
      if self._cancel_event.is_set():
        raise StageCancelled(self.name)
      self.output(record)


class DoOperation(Operation):
  """Runs a private copy of a DoFn over the elements it receives."""
  def __init__(self, node, serialized_fn, context, debug=False):
    super().__init__(node.label, debug)
    self._ptype = node.ptype
    self._serialized_fn = serialized_fn
    self._context = context
    self.fn = None

  def setup(self):
    self.fn = pickler.loads(self._serialized_fn)
    self.fn.setup()

  def start(self):
    self.fn.start_bundle(self._context)

  def process(self, o):
    if self.debug_logging_enabled:
      _LOGGER.debug('Processing [%s] in %s', o, self)
    results = self.fn.process(o)
    if results is not None:
      for result in results:
        self.output(result)

  def finish(self):
    results = self.fn.finish_bundle()
    if results is not None:
      for result in results:
        self.output(result)

  def teardown(self):
    if self.fn is not None:
      self.fn.teardown()

  def output(self, o):
    if (self.debug_logging_enabled and self._ptype is not None and
        not self._ptype.validate(o)):
      _LOGGER.debug('%s emitted %r which is not a %s', self, o, self._ptype)
    super().output(o)


class CombineOperation(Operation):
  """Reduces the values of each grouped record with a CombineFn copy."""
  def __init__(self, node, serialized_fn, debug=False):
    super().__init__(node.label, debug)
    self._serialized_fn = serialized_fn
    self.fn = None

  def setup(self):
    self.fn = pickler.loads(self._serialized_fn)

  def process(self, o):
    if self.debug_logging_enabled:
      _LOGGER.debug('Processing [%s] in %s', o, self)
    key, values = o
    self.output((key, self.fn.apply(values)))


class CollectOperation(Operation):
  """Buffers the records it receives."""
  def __init__(self, name, debug=False):
    super().__init__(name, debug)
    self.records = []

  def process(self, o):
    if self.debug_logging_enabled:
      _LOGGER.debug('Processing [%s] in %s', o, self)
    self.records.append(o)


class WriteOperation(CollectOperation):
  """Buffers records bound for a target; they are written on commit."""


class StageRunner(object):
  """Runs a :class:`~batchflow.runners.planner.JobStage` against a store."""
  def __init__(
      self,
      stage,
      store,
      num_partitions,
      debug=False,
      side_input_memory_limit_mb=None):
    self.stage = stage
    self._store = store
    self._desired_num_partitions = num_partitions
    self._debug = debug
    self._side_input_memory_limit_mb = side_input_memory_limit_mb
    self._side_inputs = {}
    self._serialized_fns = {}  # type: Dict[int, bytes]
    self._partitions = []

  @property
  def num_partitions(self):
    return len(self._partitions)

  def prepare(self):
    """Resolves side inputs and splits the stage input into partitions."""
    for source in self.stage.side_inputs:
      self._side_inputs[source] = self._resolve_side_input(source)
    for node in self.stage.nodes():
      if node.fn is not None:
        self._serialized_fns[node.node_id] = pickler.dumps(node.fn)
    self._partitions = self._root_partitions()
    _LOGGER.debug(
        'Stage %s runs in %d partitions', self.stage.name, self.num_partitions)

  def _resolve_side_input(self, source):
    records = tuple(source.read())
    size = objsize.get_deep_size(records)
    if self._debug:
      _LOGGER.debug(
          'Side input %s of stage %s: %d records, about %d bytes',
          source.display_name(),
          self.stage.name,
          len(records),
          size)
    limit = self._side_input_memory_limit_mb
    if limit is not None and size > limit * _MB:
      _LOGGER.warning(
          'Side input %s of stage %s takes about %.1f MB, more than the '
          '%s MB limit. Every partition holds a copy of it in memory.',
          source.display_name(),
          self.stage.name,
          size / _MB,
          limit)
    return records

  def _root_partitions(self):
    root = self.stage.graph.node(self.stage.root_id)
    num_partitions = self._desired_num_partitions
    if root.kind == NodeKind.SOURCE_READ:
      return [split.read for split in root.source.split(num_partitions)]
    inputs = [self._store.get(input_id) for input_id in root.inputs]
    if root.kind == NodeKind.GROUP_BY_KEY:
      records = shuffle.group_by_key(inputs[0])
    elif root.kind == NodeKind.JOIN:
      records = shuffle.join(inputs[0], inputs[1])
    elif root.kind == NodeKind.UNION:
      records = shuffle.union(inputs)
    else:
      records = inputs[0]
    return [
        functools.partial(iter, part)
        for part in partition(records, num_partitions)
    ]

  def _create_operation(self, node, partition_index):
    if node.kind == NodeKind.ELEMENTWISE:
      side_inputs = types.MappingProxyType({
          source: self._side_inputs[source]
          for source in node.side_inputs
      })
      context = DoFnContext(
          node.label, partition_index, self.num_partitions, side_inputs)
      return DoOperation(
          node, self._serialized_fns[node.node_id], context, self._debug)
    elif node.kind == NodeKind.COMBINE:
      return CombineOperation(
          node, self._serialized_fns[node.node_id], self._debug)
    elif node.kind == NodeKind.SINK_WRITE:
      return WriteOperation(node.label, self._debug)
    raise ValueError(
        'A %s node cannot be fused into a stage: %s' % (node.kind, node.label))

  def run_partition(self, partition_index, cancel_event):
    # type: (...) -> Tuple[Dict[int, list], Dict[int, list]]

    """Runs the stage over one partition.

    Returns:
      A pair of dicts: records per stage output node, and records per sink
      write node.
    """
    if cancel_event.is_set():
      raise StageCancelled(self.stage.name)
    nodes = self.stage.nodes()
    root = nodes[0]
    read_op = ReadOperation(
        root.label if root.kind in _READ_ROOT_KINDS else root.label + '/Read',
        self._partitions[partition_index],
        cancel_event,
        self._debug)
    ops = [read_op]
    op_by_node = {}
    for node in nodes:
      if node is root and root.kind in _READ_ROOT_KINDS:
        op_by_node[node.node_id] = read_op
        continue
      op = self._create_operation(node, partition_index)
      producer = read_op if node is root else op_by_node[node.inputs[0]]
      producer.add_receiver(op)
      op_by_node[node.node_id] = op
      ops.append(op)
    collectors = {}
    for node_id in sorted(self.stage.outputs):
      collector = CollectOperation(
          '%s/Collect' % self.stage.graph.node(node_id).label, self._debug)
      op_by_node[node_id].add_receiver(collector)
      collectors[node_id] = collector
      ops.append(collector)

    try:
      for op in ops:
        op.setup()
      # Receivers are started before their producers, so the read starts last.
      for op in reversed(ops):
        op.start()
      for op in ops:
        op.finish()
    finally:
      for op in ops:
        op.teardown()

    writes = {
        node_id: op.records
        for node_id, op in op_by_node.items()
        if isinstance(op, WriteOperation)
    }
    return {
        node_id: collector.records
        for node_id, collector in collectors.items()
    }, writes

  def commit(self, partition_results):
    """Writes sink outputs to their targets, then stores stage outputs."""
    outputs = {}
    for node_id in self.stage.outputs:
      outputs[node_id] = list(
          itertools.chain.from_iterable(
              result[0][node_id] for result in partition_results))
    for node in self.stage.nodes():
      if node.kind == NodeKind.SINK_WRITE:
        node.target.write(
            itertools.chain.from_iterable(
                result[1][node.node_id] for result in partition_results))
        _LOGGER.info('Stage %s wrote %s', self.stage.name, node.label)
    self._store.commit(outputs)
