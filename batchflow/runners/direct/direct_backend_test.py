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

"""Unit tests for the DirectBackend."""

# pytype: skip-file

import logging
import unittest
from concurrent import futures

from batchflow.error import PipelineExecutionError
from batchflow.error import PValueError
from batchflow.io.sources import InMemorySource
from batchflow.options.pipeline_options import PipelineOptions
from batchflow.pipeline import Pipeline
from batchflow.runners import planner
from batchflow.runners.direct.direct_backend import DirectBackend
from batchflow.runners.runner import Backend
from batchflow.runners.runner import JobStageHandle
from batchflow.transforms.core import DoFn
from batchflow.transforms.core import ParallelDoOptions


class _PartitionTaggingDoFn(DoFn):
  """Emits (partition, element, count of elements seen by this copy)."""
  def __init__(self):
    self.seen = 0
    self.partition_index = None

  def start_bundle(self, context):
    self.partition_index = context.partition_index

  def process(self, element):
    yield self.partition_index, element, self.seen
    self.seen += 1


class _AddSideSumDoFn(DoFn):
  def __init__(self, side):
    self.side = side
    self.total = None

  def start_bundle(self, context):
    self.total = sum(context.side_input(self.side))

  def process(self, element):
    yield element + self.total


class DirectBackendTest(unittest.TestCase):
  def test_is_a_backend(self):
    backend = DirectBackend()
    self.assertIsInstance(backend, Backend)
    self.assertTrue(backend.supports_side_input())

  def test_every_partition_has_its_own_fn(self):
    options = PipelineOptions(['--num_partitions=4'])
    with Pipeline('DirectBackend', options=options) as p:
      tagged = p.create(range(8)).parallel_do('Tag', _PartitionTaggingDoFn())
      records = tagged.materialize()
    self.assertEqual(sorted(r[1] for r in records), list(range(8)))
    self.assertEqual(sorted(set(r[0] for r in records)), [0, 1, 2, 3])
    # Each copy starts counting from zero.
    self.assertEqual(sorted(r[2] for r in records), [0, 0, 0, 0, 1, 1, 1, 1])

  def test_side_input(self):
    with Pipeline('DirectBackend') as p:
      side = p.create([1, 2, 3]).map(lambda x: x * 10).as_side_input()
      added = p.create([1, 2]).parallel_do(
          'AddSum', _AddSideSumDoFn(side), options=ParallelDoOptions.of(side))
      self.assertEqual(added.materialize(), [61, 62])

  def test_external_side_input(self):
    side = InMemorySource([5, 5])
    with Pipeline('DirectBackend') as p:
      added = p.create([0]).parallel_do(
          'AddSum', _AddSideSumDoFn(side), options=ParallelDoOptions.of(side))
      self.assertEqual(added.materialize(), [10])

  def test_undeclared_side_input(self):
    side = InMemorySource([5])
    p = Pipeline('DirectBackend')
    added = p.create([0]).parallel_do('AddSum', _AddSideSumDoFn(side))
    with self.assertRaises(PipelineExecutionError) as context:
      added.materialize()
    self.assertIsInstance(context.exception.__cause__, PValueError)

  def test_oversized_side_input_warns(self):
    options = PipelineOptions(['--side_input_memory_limit_mb=0.0001'])
    side = InMemorySource(list(range(1000)))
    with Pipeline('DirectBackend', options=options) as p:
      added = p.create([0]).parallel_do(
          'AddSum', _AddSideSumDoFn(side), options=ParallelDoOptions.of(side))
      with self.assertLogs('batchflow.runners.worker.operations',
                           level='WARNING') as logs:
        self.assertEqual(added.materialize(), [sum(range(1000))])
    self.assertIn('InMemorySource(1000)', '\n'.join(logs.output))

  def test_submit_requires_completed_predecessors(self):
    p = Pipeline('DirectBackend')
    grouped = p.create([('a', 1)]).by(lambda kv: kv[0]).group_by_key()
    first, second = planner.plan(p.graph, [grouped.node_id])
    backend = DirectBackend()
    unfinished = JobStageHandle(first, futures.Future())
    with self.assertRaises(ValueError):
      backend.submit(second, [unfinished])

  def test_stages_run_in_order_and_results_are_released(self):
    p = Pipeline('DirectBackend')
    grouped = p.create([('a', 1), ('a', 2)]).by(
        lambda kv: kv[0]).group_by_key()
    first, second = planner.plan(p.graph, [grouped.node_id])
    backend = DirectBackend()
    handle = backend.submit(first, [])
    self.assertTrue(backend.wait(handle).succeeded)
    result = backend.wait(backend.submit(second, [handle]))
    self.assertEqual(result.stage_name, second.name)
    self.assertTrue(result.succeeded)
    self.assertEqual(
        list(backend.read(grouped.node_id)),
        [('a', [('a', 1), ('a', 2)])])
    backend.cleanup()
    with self.assertRaises(PValueError):
      backend.read(grouped.node_id)

  def test_failed_stage_commits_nothing(self):
    p = Pipeline('DirectBackend')
    broken = p.create([1, 0]).map(lambda x: 1 // x)
    stage, = planner.plan(p.graph, [broken.node_id])
    backend = DirectBackend()
    result = backend.wait(backend.submit(stage, []))
    self.assertFalse(result.succeeded)
    self.assertIsInstance(result.error, ZeroDivisionError)
    with self.assertRaises(PValueError):
      backend.read(broken.node_id)
    backend.cleanup()


if __name__ == '__main__':
  logging.getLogger().setLevel(logging.INFO)
  unittest.main()
