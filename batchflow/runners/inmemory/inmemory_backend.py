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

"""InMemoryBackend, executing job stages one at a time in the caller's thread.

It runs every stage as a single partition and cannot broadcast side inputs,
so steps that declare side inputs (the map-side join among them) are
rejected before anything runs.
"""

# pytype: skip-file

from concurrent import futures

from batchflow.runners.direct.direct_backend import DirectBackend

__all__ = ['InMemoryBackend']


class _InlineExecutor(futures.Executor):
  """Runs every submitted call immediately, returning a completed future."""
  def submit(self, fn, *args, **kwargs):
    future = futures.Future()
    try:
      future.set_result(fn(*args, **kwargs))
    except BaseException as e:  # pylint: disable=broad-except
      future.set_exception(e)
    return future


class InMemoryBackend(DirectBackend):
  """A sequential, single-partition backend without side-input support."""
  def __init__(self, options=None):
    super().__init__(options)
    self._num_partitions = 1
    self._inline = _InlineExecutor()

  def supports_side_input(self):
    return False

  def _stage_executor(self):
    return self._inline

  def _worker_executor(self):
    return self._inline
