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

"""The operator graph: an arena of transformation steps.

Nodes are addressed by stable integer ids and refer to their upstream nodes
by id only, so a node reachable along several paths (a diamond) is still a
single entry in the arena. The graph is owned by exactly one pipeline and is
only mutated by the thread that builds the pipeline.
"""

# pytype: skip-file

import heapq
import logging
from typing import Dict
from typing import FrozenSet
from typing import Iterable
from typing import List
from typing import Optional
from typing import Tuple

from batchflow.error import PlanningError

__all__ = ['NodeKind', 'Node', 'OperatorGraph']

_LOGGER = logging.getLogger(__name__)


class NodeKind(object):
  """The kinds of transformation steps an operator graph is made of."""
  SOURCE_READ = 'source-read'
  ELEMENTWISE = 'elementwise-transform'
  GROUP_BY_KEY = 'group-by-key'
  COMBINE = 'combine'
  JOIN = 'join'
  UNION = 'union'
  SINK_WRITE = 'sink-write'

  ALL = frozenset(
      [SOURCE_READ, ELEMENTWISE, GROUP_BY_KEY, COMBINE, JOIN, UNION, SINK_WRITE])

  # Kinds that need all of their input reshuffled before they can run.
  SHUFFLE_KINDS = frozenset([GROUP_BY_KEY, JOIN, UNION])


class Node(object):
  """One transformation step of an operator graph."""
  def __init__(
      self,
      node_id,  # type: int
      kind,  # type: str
      label,  # type: str
      inputs=(),  # type: Iterable[int]
      fn=None,
      options=None,
      source=None,
      target=None,
      ptype=None):
    self.node_id = node_id
    self.kind = kind
    self.label = label
    self.inputs = tuple(inputs)
    self.fn = fn
    self.options = options
    self.source = source
    self.target = target
    self.ptype = ptype

  @property
  def side_inputs(self):
    # type: () -> FrozenSet
    if self.options is None:
      return frozenset()
    return self.options.source_targets

  def __repr__(self):
    return '<Node %d %s %r>' % (self.node_id, self.kind, self.label)


class OperatorGraph(object):
  """An append-only arena of :class:`Node` objects."""
  def __init__(self):
    self._nodes = []  # type: List[Node]
    self._consumers = {}  # type: Dict[int, List[int]]

  def add_node(
      self,
      kind,
      label,
      inputs=(),
      fn=None,
      options=None,
      source=None,
      target=None,
      ptype=None):
    # type: (...) -> Node

    """Appends a node and returns it.

    Raises:
      ValueError: if the kind is unknown, an input id does not exist, or a
        read or write node lacks its source or target.
    """
    if kind not in NodeKind.ALL:
      raise ValueError('Unknown node kind: %s' % kind)
    inputs = tuple(inputs)
    for input_id in inputs:
      if input_id not in self:
        raise ValueError('Unknown input node id %r for %s' % (input_id, label))
    if kind == NodeKind.SOURCE_READ and (source is None or inputs):
      raise ValueError('A source read needs a source and no inputs.')
    if kind == NodeKind.SINK_WRITE and target is None:
      raise ValueError('A sink write needs a target.')
    node = Node(
        len(self._nodes),
        kind,
        label,
        inputs=inputs,
        fn=fn,
        options=options,
        source=source,
        target=target,
        ptype=ptype)
    self._nodes.append(node)
    self._consumers[node.node_id] = []
    for input_id in inputs:
      self._consumers[input_id].append(node.node_id)
    _LOGGER.debug('Added %s', node)
    return node

  def node(self, node_id):
    # type: (int) -> Node
    try:
      return self._nodes[node_id]
    except (IndexError, TypeError):
      raise PlanningError('Unknown node id: %r' % (node_id, ))

  def nodes(self):
    # type: () -> List[Node]
    return list(self._nodes)

  def __contains__(self, node_id):
    return isinstance(node_id, int) and 0 <= node_id < len(self._nodes)

  def __len__(self):
    return len(self._nodes)

  def consumers(self, node_id):
    # type: (int) -> List[int]

    """Returns ids of nodes taking node_id as a main input."""
    return list(self._consumers[self.node(node_id).node_id])

  def writers_of(self, source):
    # type: (...) -> List[int]

    """Returns ids of the sink writes whose target is the given source."""
    return [
        node.node_id for node in self._nodes
        if node.kind == NodeKind.SINK_WRITE and node.target == source
    ]

  def dependencies(self, node_id):
    # type: (int) -> Tuple[int, ...]

    """Returns every node that must be computed before node_id.

    These are the main inputs, the writers of each declared side input and,
    for a source read, the writers of the location being read.
    """
    node = self.node(node_id)
    deps = list(node.inputs)
    for side_input in sorted(node.side_inputs, key=repr):
      deps.extend(self.writers_of(side_input))
    if node.kind == NodeKind.SOURCE_READ:
      deps.extend(self.writers_of(node.source))
    seen = set()
    return tuple(d for d in deps if not (d in seen or seen.add(d)))

  def topological_order(self, node_ids, dependencies=None):
    # type: (Iterable[int], Optional[Dict[int, Iterable[int]]]) -> List[int]

    """Orders node_ids so that every node follows its dependencies.

    Only dependencies within node_ids are considered. Among nodes that are
    ready at the same time the one with the smaller id comes first, so the
    order is stable.

    Raises:
      PlanningError: if the nodes contain a dependency cycle.
    """
    node_ids = set(node_ids)
    if dependencies is None:
      dependencies = {n: self.dependencies(n) for n in node_ids}
    remaining = {}
    dependents = {n: [] for n in node_ids}
    for n in node_ids:
      deps = set(d for d in dependencies[n] if d in node_ids)
      remaining[n] = len(deps)
      for d in deps:
        dependents[d].append(n)
    ready = [n for n, count in remaining.items() if not count]
    heapq.heapify(ready)
    ordered = []
    while ready:
      n = heapq.heappop(ready)
      ordered.append(n)
      for dependent in dependents[n]:
        remaining[dependent] -= 1
        if not remaining[dependent]:
          heapq.heappush(ready, dependent)
    if len(ordered) != len(node_ids):
      cyclic = sorted(n for n, count in remaining.items() if count)
      raise PlanningError(
          'The operator graph contains a cycle through: %s' %
          ', '.join(self.node(n).label for n in cyclic))
    return ordered
