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

"""Lowers an operator graph to an ordered list of job stages.

Planning starts from the nodes whose results were requested since the last
run and walks their dependencies back until it reaches nodes whose results
the backend already holds. The required nodes start out as singleton stages
which a sequence of phases then annotates and fuses:

  * check_side_inputs: every side input must be finite and materializable.
  * annotate_barriers: a step waits for the stages writing its side inputs
    and a read waits for the stages writing the location it reads.
  * annotate_roots: reads, reshuffles and multi-input steps start a stage.
  * greedily_fuse: linear chains and fan-outs collapse into one stage.
  * annotate_outputs: which results leave each stage and must be stored.
  * sort_stages: stable topological order.

Fusion is purely an optimization; running the stages yields the records a
one-node-at-a-time evaluation of the graph would.
"""

# pytype: skip-file

import logging
from typing import Dict
from typing import FrozenSet
from typing import Iterable
from typing import List
from typing import Set

from batchflow.error import PlanningError
from batchflow.error import UnsupportedBackendError
from batchflow.graph import NodeKind
from batchflow.graph import OperatorGraph
from batchflow.io.sources import IntermediateSourceTarget

__all__ = ['JobStage', 'PlanningContext', 'plan']

_LOGGER = logging.getLogger(__name__)


class JobStage(object):
  """A set of nodes that a backend executes as one unit of work.

  The nodes form a tree rooted at ``node_ids[0]``: every other node takes its
  single main input from a node earlier in the same stage, so only the root
  reads records produced outside the stage.
  """
  def __init__(
      self,
      name,  # type: str
      node_ids,  # type: List[int]
      graph,  # type: OperatorGraph
      must_follow=frozenset(),  # type: FrozenSet[JobStage]
      forced_root=False):
    self.name = name
    self.description = name
    self.node_ids = list(node_ids)
    self.graph = graph
    self.must_follow = must_follow
    self.forced_root = forced_root
    # Filled in by annotate_outputs.
    self.inputs = ()  # type: Iterable[int]
    self.outputs = frozenset()  # type: FrozenSet[int]

  def __repr__(self):
    must_follow = ', '.join(prev.name for prev in self.must_follow)
    return "%s\n  %s\n  must follow: %s\n  outputs: %s" % (
        self.name,
        '\n  '.join(
            "%s:%s" % (node.label, node.kind) for node in self.nodes()),
        must_follow,
        ', '.join(str(o) for o in sorted(self.outputs)))

  @property
  def root_id(self):
    # type: () -> int
    return self.node_ids[0]

  def nodes(self):
    return [self.graph.node(n) for n in self.node_ids]

  @property
  def side_inputs(self):
    side_inputs = frozenset()
    for node in self.nodes():
      side_inputs = union(side_inputs, node.side_inputs)
    return side_inputs

  def can_fuse(self, consumer, ancestors):
    """Whether consumer may join this stage.

    The consumer must not need a stage of its own, and every stage it has
    to wait for must already be a predecessor of this stage: a side input
    still being computed elsewhere is a barrier.
    """
    return (
        not consumer.forced_root and consumer is not self and
        all(prev in ancestors for prev in consumer.must_follow))

  def fuse(self, other):
    return JobStage(
        "(%s)+(%s)" % (self.name, other.name),
        self.node_ids + other.node_ids,
        self.graph,
        union(self.must_follow, other.must_follow),
        forced_root=self.forced_root or other.forced_root)


class PlanningContext(object):
  """Everything the planning phases share."""
  def __init__(
      self,
      graph,  # type: OperatorGraph
      outputs,  # type: Iterable[int]
      available=frozenset(),  # type: FrozenSet[int]
      supports_side_input=True):
    self.graph = graph
    self.outputs = tuple(outputs)
    self.available = frozenset(available)
    self.supports_side_input = supports_side_input
    # Filled in by leaf_stages.
    self.required = []  # type: List[int]
    self.dependencies = {}  # type: Dict[int, tuple]

  def position(self, stage):
    """Sort key placing stages in the order of their roots."""
    return self._positions[stage.root_id]

  def set_required(self, required):
    self.required = required
    self._positions = {n: i for i, n in enumerate(required)}


def leaf_stages(context):
  # type: (PlanningContext) -> List[JobStage]

  """Returns one singleton stage per node that must be computed."""
  graph = context.graph
  required = set()  # type: Set[int]
  stack = list(context.outputs)
  while stack:
    node_id = stack.pop()
    if node_id in required or node_id in context.available:
      continue
    graph.node(node_id)
    required.add(node_id)
    deps = graph.dependencies(node_id)
    context.dependencies[node_id] = deps
    stack.extend(deps)
  context.set_required(
      graph.topological_order(required, context.dependencies))
  return [
      JobStage(graph.node(n).label, [n], graph) for n in context.required
  ]


def check_side_inputs(stages, context):
  # type: (Iterable[JobStage], PlanningContext) -> Iterable[JobStage]

  """Fails for side inputs that cannot be broadcast."""
  graph = context.graph
  for stage in stages:
    for node in stage.nodes():
      for source in sorted(node.side_inputs, key=lambda s: s.display_name()):
        if not context.supports_side_input:
          raise UnsupportedBackendError(
              '%s reads %s as a side input, but the backend cannot broadcast '
              'side inputs.' % (node.label, source.display_name()))
        if graph.writers_of(source):
          # Written by this pipeline: either pending, and thus planned
          # before the reader, or already written by an earlier run.
          continue
        if isinstance(source, IntermediateSourceTarget):
          if not source.is_materialized:
            raise PlanningError(
                'Side input %s of %s is never written.' %
                (source.display_name(), node.label))
        elif not source.is_bounded:
          raise PlanningError(
              'Side input %s of %s is not a finite collection.' %
              (source.display_name(), node.label))
  return stages


def annotate_barriers(stages, context):
  """Makes each stage wait for the stages writing what it reads aside."""
  stage_by_node = {stage.root_id: stage for stage in stages}
  for stage in stages:
    node = context.graph.node(stage.root_id)
    barriers = [
        stage_by_node[dep] for dep in context.dependencies[node.node_id]
        if dep not in node.inputs and dep in stage_by_node
    ]
    if barriers:
      stage.must_follow = union(stage.must_follow, frozenset(barriers))
  return stages


def annotate_roots(stages, context):
  """Marks the stages that may never be fused into their producer."""
  required = set(context.required)
  for stage in stages:
    node = context.graph.node(stage.root_id)
    if (node.kind in NodeKind.SHUFFLE_KINDS or
        node.kind == NodeKind.SOURCE_READ or len(node.inputs) != 1 or
        node.inputs[0] not in required):
      stage.forced_root = True
  return stages


def greedily_fuse(stages, context):
  """Places nodes sharing an edge in the same stage, whenever possible.
  """
  graph = context.graph
  stage_by_node = {stage.root_id: stage for stage in stages}

  # Used to always reference the correct stage as the producer and
  # consumer maps are not updated when stages are fused away.
  replacements = {}  # type: Dict[JobStage, JobStage]

  def replacement(s):
    old_ss = []
    while s in replacements:
      old_ss.append(s)
      s = replacements[s]
    for old_s in old_ss[:-1]:
      replacements[old_s] = s
    return s

  def fuse(producer, consumer):
    fused = producer.fuse(consumer)
    replacements[producer] = fused
    replacements[consumer] = fused

  def ancestors(stage):
    seen = set()
    stack = [replacement(s) for s in stage.must_follow]
    while stack:
      s = stack.pop()
      if s not in seen:
        seen.add(s)
        stack.extend(replacement(prev) for prev in s.must_follow)
    return seen

  for producer_id in context.required:
    for consumer_id in graph.consumers(producer_id):
      if consumer_id not in stage_by_node:
        continue
      producer = replacement(stage_by_node[producer_id])
      consumer = replacement(stage_by_node[consumer_id])
      if producer is consumer:
        continue
      # Update consumer.must_follow set, as it's used in can_fuse.
      consumer.must_follow = frozenset(
          replacement(s) for s in consumer.must_follow)
      if producer.can_fuse(consumer, ancestors(producer)):
        fuse(producer, consumer)
      else:
        consumer.must_follow = union(
            consumer.must_follow, frozenset([producer]))

  final_stages = []
  for stage in stages:
    stage = replacement(stage)
    if stage not in final_stages:
      final_stages.append(stage)
  for stage in final_stages:
    # Update all references to their final values before throwing
    # the replacement data away.
    stage.must_follow = frozenset(replacement(s) for s in stage.must_follow)
  return final_stages


def annotate_outputs(stages, context):
  """Records which results of each stage are read outside of it."""
  graph = context.graph
  stage_by_node = {n: stage for stage in stages for n in stage.node_ids}
  requested = set(context.outputs)
  for stage in stages:
    outputs = set()
    for node in stage.nodes():
      if node.kind == NodeKind.SINK_WRITE:
        continue
      if node.node_id in requested or any(
          stage_by_node.get(c, stage) is not stage
          for c in graph.consumers(node.node_id)):
        outputs.add(node.node_id)
    stage.outputs = frozenset(outputs)
    stage.inputs = graph.node(stage.root_id).inputs
  return stages


def sort_stages(stages, context):
  """Order stages suitable for sequential execution and name them.
  """
  all_stages = set(stages)
  seen = set()
  in_progress = set()
  ordered = []

  def process(stage):
    if stage in in_progress:
      raise PlanningError(
          'Job stages depend on each other cyclically: %s' % stage.description)
    if stage not in seen:
      seen.add(stage)
      if stage not in all_stages:
        return
      in_progress.add(stage)
      for prev in sorted(stage.must_follow, key=context.position):
        process(prev)
      in_progress.discard(stage)
      ordered.append(stage)

  for stage in sorted(stages, key=context.position):
    process(stage)
  for i, stage in enumerate(ordered):
    stage.name = 'S%02d' % i
  return ordered


DEFAULT_PHASES = [
    check_side_inputs,
    annotate_barriers,
    annotate_roots,
    greedily_fuse,
    annotate_outputs,
    sort_stages,
]


def plan(
    graph,  # type: OperatorGraph
    outputs,  # type: Iterable[int]
    available=frozenset(),  # type: FrozenSet[int]
    supports_side_input=True,
    phases=None):
  # type: (...) -> List[JobStage]

  """Returns the job stages computing outputs, in an executable order.

  Args:
    graph: the operator graph.
    outputs: ids of the nodes whose results are requested: sink writes and
      materializations.
    available: ids of nodes whose results the backend already holds. They
      are read, not recomputed.
    supports_side_input: whether the backend can broadcast side inputs.
    phases: the planning phases to apply, DEFAULT_PHASES if None.

  Raises:
    PlanningError: if the graph has a cycle or a side input cannot be
      resolved to a finite materializable collection.
    UnsupportedBackendError: if a side input is needed but the backend
      cannot broadcast one.
  """
  context = PlanningContext(graph, outputs, available, supports_side_input)

  # Initial set of stages are singleton leaf nodes.
  stages = leaf_stages(context)

  # Apply each phase in order.
  for phase in phases if phases is not None else DEFAULT_PHASES:
    _LOGGER.info('%s %s %s', '=' * 20, phase.__name__, '=' * 20)
    stages = list(phase(stages, context))
    _LOGGER.debug('%s %s', len(stages), [len(s.node_ids) for s in stages])
    _LOGGER.debug('Stages: %s', [str(s) for s in stages])

  return stages


def union(a, b):
  # Minimize the number of distinct sets.
  if not a or a == b:
    return b
  elif not b:
    return a
  else:
    return frozenset.union(a, b)
