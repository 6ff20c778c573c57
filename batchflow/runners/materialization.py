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

"""Results of completed job stages, held by a backend between stages."""

# pytype: skip-file

import logging
import threading
from typing import Dict
from typing import Iterable
from typing import Mapping

from batchflow.error import PValueError

__all__ = ['MaterializationStore']

_LOGGER = logging.getLogger(__name__)


class MaterializationStore(object):
  """Maps node ids to the immutable record tuples computed for them.

  A stage's results become visible all at once when the stage commits, so
  a failed or cancelled stage leaves nothing behind. The lock only guards
  the mapping; nothing waits while holding it.
  """
  def __init__(self):
    self._lock = threading.Lock()
    self._results = {}  # type: Dict[int, tuple]

  def commit(self, results):
    # type: (Mapping[int, Iterable]) -> None
    frozen = {node_id: tuple(records) for node_id, records in results.items()}
    with self._lock:
      self._results.update(frozen)
    _LOGGER.debug('Committed results of nodes %s', sorted(frozen))

  def get(self, node_id):
    # type: (int) -> tuple
    with self._lock:
      try:
        return self._results[node_id]
      except KeyError:
        raise PValueError('No stored result for node %s.' % node_id)

  def __contains__(self, node_id):
    with self._lock:
      return node_id in self._results

  def node_ids(self):
    with self._lock:
      return frozenset(self._results)

  def release(self):
    with self._lock:
      count = len(self._results)
      self._results.clear()
    _LOGGER.info('Released %d stored results', count)
