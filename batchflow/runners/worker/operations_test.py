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

"""Unit tests for the per-partition execution of job stages."""

# pytype: skip-file

import logging
import threading
import unittest

from batchflow import typehints
from batchflow.io.sources import IntermediateSourceTarget
from batchflow.pipeline import Pipeline
from batchflow.runners import planner
from batchflow.runners.materialization import MaterializationStore
from batchflow.runners.worker.operations import StageCancelled
from batchflow.runners.worker.operations import StageRunner
from batchflow.transforms.core import DoFn

# Appended to by every copy of _LifecycleDoFn.
_EVENTS = []


class _LifecycleDoFn(DoFn):
  def setup(self):
    _EVENTS.append('setup')

  def start_bundle(self, context):
    _EVENTS.append('start_bundle')

  def process(self, element):
    if element == 'bad':
      raise ValueError('bad element')
    yield element

  def finish_bundle(self):
    _EVENTS.append('finish_bundle')
    return ['done']

  def teardown(self):
    _EVENTS.append('teardown')


class StageRunnerTest(unittest.TestCase):
  def setUp(self):
    del _EVENTS[:]
    self.pipeline = Pipeline('DirectBackend')
    self.store = MaterializationStore()

  def _runner(self, pcoll, num_partitions=1, **kwargs):
    stage, = planner.plan(self.pipeline.graph, [pcoll.node_id], **kwargs)
    runner = StageRunner(stage, self.store, num_partitions)
    runner.prepare()
    return runner

  def test_dofn_lifecycle(self):
    out = self.pipeline.create(['a']).parallel_do('Do', _LifecycleDoFn())
    runner = self._runner(out)
    outputs, writes = runner.run_partition(0, threading.Event())
    self.assertEqual(outputs, {out.node_id: ['a', 'done']})
    self.assertEqual(writes, {})
    self.assertEqual(
        _EVENTS, ['setup', 'start_bundle', 'finish_bundle', 'teardown'])

  def test_teardown_after_failure(self):
    out = self.pipeline.create(['bad']).parallel_do('Do', _LifecycleDoFn())
    runner = self._runner(out)
    with self.assertRaisesRegex(ValueError, 'bad element'):
      runner.run_partition(0, threading.Event())
    self.assertEqual(_EVENTS, ['setup', 'start_bundle', 'teardown'])

  def test_cancelled_partition(self):
    out = self.pipeline.create(['a']).parallel_do('Do', _LifecycleDoFn())
    runner = self._runner(out)
    cancel_event = threading.Event()
    cancel_event.set()
    with self.assertRaises(StageCancelled):
      runner.run_partition(0, cancel_event)

  def test_commit_stores_outputs_and_writes_targets(self):
    target = IntermediateSourceTarget('out')
    numbers = self.pipeline.create([1, 2, 3, 4])
    doubled = numbers.map(lambda x: x * 2)
    pdone = doubled.write(target)
    stage, = planner.plan(
        self.pipeline.graph, [pdone.node_id, doubled.node_id])
    runner = StageRunner(stage, self.store, 2)
    runner.prepare()
    self.assertEqual(runner.num_partitions, 2)
    results = [
        runner.run_partition(i, threading.Event())
        for i in range(runner.num_partitions)
    ]
    self.assertFalse(target.is_materialized)
    self.assertNotIn(doubled.node_id, self.store)
    runner.commit(results)
    self.assertEqual(list(target.read()), [2, 4, 6, 8])
    self.assertEqual(self.store.get(doubled.node_id), (2, 4, 6, 8))

  def test_combine_after_shuffle(self):
    table = self.pipeline.create(
        [('a', 1), ('b', 2), ('a', 3)],
        ptype=typehints.table_of(typehints.strings(), typehints.ints()))
    summed = table.group_by_key().combine_values(sum)
    self.store.commit({table.node_id: [('a', 1), ('b', 2), ('a', 3)]})
    runner = self._runner(
        summed, num_partitions=4, available=frozenset([table.node_id]))
    self.assertEqual(runner.num_partitions, 2)
    results = [
        runner.run_partition(i, threading.Event())
        for i in range(runner.num_partitions)
    ]
    runner.commit(results)
    self.assertEqual(self.store.get(summed.node_id), (('a', 4), ('b', 2)))

  def test_debug_logs_elements(self):
    out = self.pipeline.create(['a']).parallel_do('Do', _LifecycleDoFn())
    stage, = planner.plan(self.pipeline.graph, [out.node_id])
    runner = StageRunner(stage, self.store, 1, debug=True)
    runner.prepare()
    with self.assertLogs('batchflow.runners.worker.operations',
                         level='DEBUG') as logs:
      runner.run_partition(0, threading.Event())
    self.assertTrue(any('Processing [a]' in line for line in logs.output))


if __name__ == '__main__':
  logging.getLogger().setLevel(logging.INFO)
  unittest.main()
