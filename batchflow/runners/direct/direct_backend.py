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

"""DirectBackend, executing job stages on local thread pools.

Independent stages run concurrently on a stage pool, and every stage is
split into partitions that run on a worker pool of
``--direct_num_workers`` threads. Side inputs are supported: each stage
reads them once and every partition receives the same immutable records.
"""

# pytype: skip-file

import logging
import threading
from concurrent import futures

from batchflow.options.pipeline_options import DebugOptions
from batchflow.options.pipeline_options import DirectOptions
from batchflow.options.pipeline_options import PipelineOptions
from batchflow.options.pipeline_options import SideInputOptions
from batchflow.runners.materialization import MaterializationStore
from batchflow.runners.runner import JobStageHandle
from batchflow.runners.runner import StageResult
from batchflow.runners.worker.operations import StageCancelled
from batchflow.runners.worker.operations import StageRunner

__all__ = ['DirectBackend']

_LOGGER = logging.getLogger(__name__)


class DirectBackend(object):
  """Executes job stages locally, in parallel partitions."""
  def __init__(self, options=None):
    options = options or PipelineOptions([])
    direct_options = options.view_as(DirectOptions)
    self._num_partitions = direct_options.num_partitions
    self._num_workers = direct_options.direct_num_workers
    self._debug = options.view_as(DebugOptions).debug
    self._side_input_memory_limit_mb = options.view_as(
        SideInputOptions).side_input_memory_limit_mb
    self._store = MaterializationStore()
    self._lock = threading.Lock()
    self._stage_pool = None
    self._worker_pool = None

  def __repr__(self):
    return '%s(num_partitions=%d)' % (
        type(self).__name__, self._num_partitions)

  def supports_side_input(self):
    return True

  def enable_debug(self):
    self._debug = True

  def _stage_executor(self):
    with self._lock:
      if self._stage_pool is None:
        self._stage_pool = futures.ThreadPoolExecutor(
            thread_name_prefix='batchflow-stage')
      return self._stage_pool

  def _worker_executor(self):
    with self._lock:
      if self._worker_pool is None:
        self._worker_pool = futures.ThreadPoolExecutor(
            max_workers=self._num_workers,
            thread_name_prefix='batchflow-worker')
      return self._worker_pool

  def submit(self, stage, predecessors):
    for predecessor in predecessors:
      if not (predecessor.future.done() and
              self.wait(predecessor).succeeded):
        raise ValueError(
            'Stage %s submitted before %s completed successfully.' %
            (stage.name, predecessor.stage.name))
    handle = JobStageHandle(stage, None)
    handle.future = self._stage_executor().submit(
        self._run_stage, stage, handle.cancel_requested)
    _LOGGER.debug('Submitted stage %s', stage.name)
    return handle

  def wait(self, handle):
    try:
      return handle.future.result()
    except futures.CancelledError as e:
      return StageResult(handle.stage.name, False, StageCancelled(str(e)))

  def cancel(self, handle):
    handle.cancel_requested.set()
    handle.future.cancel()

  def read(self, node_id):
    return self._store.get(node_id)

  def cleanup(self):
    self._store.release()
    with self._lock:
      pools = [p for p in (self._stage_pool, self._worker_pool) if p]
      self._stage_pool = self._worker_pool = None
    for pool in pools:
      pool.shutdown(wait=True)

  def _run_stage(self, stage, cancel_event):
    _LOGGER.info('Running stage %s: %s', stage.name, stage.description)
    try:
      runner = StageRunner(
          stage,
          self._store,
          self._num_partitions,
          debug=self._debug,
          side_input_memory_limit_mb=self._side_input_memory_limit_mb)
      runner.prepare()
      partition_futures = [
          self._worker_executor().submit(runner.run_partition, i, cancel_event)
          for i in range(runner.num_partitions)
      ]
      futures.wait(partition_futures)
      results = [f.result() for f in partition_futures]
      if cancel_event.is_set():
        raise StageCancelled(stage.name)
      runner.commit(results)
    except StageCancelled as e:
      _LOGGER.info('Stage %s was cancelled', stage.name)
      return StageResult(stage.name, False, e)
    except Exception as e:  # pylint: disable=broad-except
      _LOGGER.error('Stage %s failed: %s', stage.name, e)
      return StageResult(stage.name, False, e)
    _LOGGER.info('Completed stage %s', stage.name)
    return StageResult(stage.name, True)
