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

"""Tests for batchflow.runners.display.plan_graph."""

# pytype: skip-file

import os
import shutil
import tempfile
import unittest

import hamcrest as hc

from batchflow import typehints
from batchflow.io.sources import InMemorySource
from batchflow.io.sources import IntermediateSourceTarget
from batchflow.pipeline import Pipeline
from batchflow.runners import planner
from batchflow.runners.display.plan_graph import PlanGraph
from batchflow.transforms.core import DoFn
from batchflow.transforms.core import ParallelDoOptions

_TABLE = typehints.table_of(typehints.strings(), typehints.ints())


class _IdentityDoFn(DoFn):
  def process(self, element):
    yield element


def _edges(plan_graph, style=None):
  return sorted((edge.get_source(), edge.get_destination())
                for edge in plan_graph._get_graph().get_edges()
                if edge.get_style() == style)


class PlanGraphTest(unittest.TestCase):
  def setUp(self):
    self.pipeline = Pipeline('DirectBackend')

  def test_stages_are_clusters(self):
    table = self.pipeline.create([('a', 1)], ptype=_TABLE)
    summed = table.group_by_key().combine_values(sum)
    stages = planner.plan(self.pipeline.graph, [summed.node_id])
    dot = PlanGraph(stages).get_dot()

    hc.assert_that(
        dot,
        hc.all_of(
            hc.contains_string('cluster_S00'),
            hc.contains_string('cluster_S01'),
            hc.contains_string('GroupByKey'),
            hc.contains_string('hexagon')))
    self.assertEqual([('n0', 'n1'), ('n1', 'n2')], _edges(PlanGraph(stages)))

  def test_side_input_edges_are_dashed(self):
    side = self.pipeline.create([('a', 'x')], ptype=_TABLE).map(
        lambda kv: kv, ptype=_TABLE).as_side_input()
    main = self.pipeline.create([('a', 1)], ptype=_TABLE)
    used = main.parallel_do(
        'Use', _IdentityDoFn(), options=ParallelDoOptions.of(side))
    pdone = used.write(IntermediateSourceTarget('out'))
    stages = planner.plan(self.pipeline.graph, [pdone.node_id])

    plan_graph = PlanGraph(stages)
    self.assertEqual([('n2', 'n4')], _edges(plan_graph, style='dashed'))
    self.assertEqual([('n0', 'n1'), ('n1', 'n2'), ('n3', 'n4'),
                      ('n4', 'n5')],
                     _edges(plan_graph))

  def test_external_side_input_has_its_own_vertex(self):
    side = InMemorySource([('a', 'x')], ptype=_TABLE)
    main = self.pipeline.create([('a', 1)], ptype=_TABLE)
    used = main.parallel_do(
        'Use', _IdentityDoFn(), options=ParallelDoOptions.of(side))
    stages = planner.plan(self.pipeline.graph, [used.node_id])

    plan_graph = PlanGraph(stages)
    self.assertEqual([('x0', 'n1')], _edges(plan_graph, style='dashed'))
    hc.assert_that(plan_graph.get_dot(), hc.contains_string('note'))

  def test_previously_computed_input(self):
    table = self.pipeline.create([('a', 1)], ptype=_TABLE)
    grouped = table.group_by_key()
    stages = planner.plan(
        self.pipeline.graph, [grouped.node_id], available=frozenset([0]))
    self.assertEqual([('x0', 'n1')], _edges(PlanGraph(stages)))
    hc.assert_that(
        PlanGraph(stages).get_dot(), hc.contains_string('stored 0'))

  def test_labels_are_escaped(self):
    self.pipeline.create([1], label='Say "hi"')
    stages = planner.plan(self.pipeline.graph, [0])
    hc.assert_that(
        PlanGraph(stages).get_dot(), hc.contains_string('Say \\"hi\\"'))

  def test_write(self):
    tmpdir = tempfile.mkdtemp()
    self.addCleanup(shutil.rmtree, tmpdir)
    path = os.path.join(tmpdir, 'plan.dot')
    self.pipeline.create([1])
    PlanGraph(planner.plan(self.pipeline.graph, [0])).write(path)
    with open(path) as f:
      hc.assert_that(f.read(), hc.contains_string('digraph'))


if __name__ == '__main__':
  unittest.main()
