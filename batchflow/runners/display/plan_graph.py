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

"""For generating the DOT representation of an execution plan.

Every job stage is drawn as a cluster holding its nodes. Solid edges are
main inputs; dashed edges lead from the writer of a side input, or from the
side input source itself, to the steps reading it.
"""

# pytype: skip-file

import threading
from typing import Dict
from typing import List

import pydot

from batchflow.graph import NodeKind

__all__ = ['PlanGraph']

_SHAPES = {
    NodeKind.SOURCE_READ: 'cylinder',
    NodeKind.SINK_WRITE: 'cylinder',
    NodeKind.GROUP_BY_KEY: 'hexagon',
    NodeKind.JOIN: 'hexagon',
    NodeKind.UNION: 'hexagon',
}


class PlanGraph(object):
  """Creates a DOT representing a list of job stages. Thread-safe."""
  def __init__(self, stages, default_vertex_attrs=None):
    """Constructor of PlanGraph.

    Examples:
      graph = PlanGraph(planner.plan(pipeline.graph, outputs))
      graph.get_dot()

    Args:
      stages: (List[JobStage]) the planned stages, in execution order.
      default_vertex_attrs: (Dict[str, str]) a dict of default vertex
          attributes.
    """
    self._lock = threading.Lock()
    self._stages = list(stages)
    self._graph = None  # type: pydot.Dot
    self._construct_graph(default_vertex_attrs or {'shape': 'box'})

  def get_dot(self):
    # type: () -> str
    return self._get_graph().to_string()

  def write(self, path):
    """Writes the DOT source to path."""
    self._get_graph().write(path, format='raw')

  def _decorate(self, value):
    """Escapes a label for the dot language."""
    return '"{}"'.format(value.replace('\\', '\\\\').replace('"', '\\"'))

  def _get_graph(self):
    with self._lock:
      return self._graph

  def _construct_graph(self, default_vertex_attrs):
    with self._lock:
      self._graph = pydot.Dot(graph_type='digraph', rankdir='TB')
      self._graph.set_node_defaults(**default_vertex_attrs)

      vertex_refs = {}  # type: Dict[int, pydot.Node]
      writers = {}
      for stage in self._stages:
        cluster = pydot.Cluster(
            stage.name, label=self._decorate(stage.name), style='rounded')
        for node in stage.nodes():
          vertex = pydot.Node(
              'n%d' % node.node_id,
              label=self._decorate(node.label),
              shape=_SHAPES.get(node.kind, 'box'))
          vertex_refs[node.node_id] = vertex
          cluster.add_node(vertex)
          if node.kind == NodeKind.SINK_WRITE:
            writers[node.target] = vertex
        self._graph.add_subgraph(cluster)

      # Inputs computed by an earlier run have no vertex of their own.
      external = {}  # type: Dict[object, pydot.Node]

      def vertex_for(key, label):
        if key not in external:
          external[key] = pydot.Node(
              'x%d' % len(external),
              label=self._decorate(label),
              shape='note',
              style='dashed')
          self._graph.add_node(external[key])
        return external[key]

      edges = []  # type: List[pydot.Edge]
      for stage in self._stages:
        for node in stage.nodes():
          dst = vertex_refs[node.node_id]
          for input_id in node.inputs:
            if input_id in vertex_refs:
              src = vertex_refs[input_id]
            else:
              src = vertex_for(input_id, 'stored %d' % input_id)
            edges.append(pydot.Edge(src, dst))
          for source in sorted(node.side_inputs,
                               key=lambda s: s.display_name()):
            if source in writers:
              src = writers[source]
            else:
              src = vertex_for(source, source.display_name())
            edges.append(pydot.Edge(src, dst, style='dashed'))
      for edge in edges:
        self._graph.add_edge(edge)
