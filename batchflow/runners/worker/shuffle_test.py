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

"""Unit tests for the reshuffles."""

# pytype: skip-file

import logging
import unittest

from batchflow.runners.worker import shuffle


class ShuffleTest(unittest.TestCase):
  def test_group_by_key_keeps_first_seen_order(self):
    self.assertEqual(
        shuffle.group_by_key([('b', 1), ('a', 2), ('b', 3)]),
        [('b', [1, 3]), ('a', [2])])

  def test_group_by_key_empty(self):
    self.assertEqual(shuffle.group_by_key([]), [])

  def test_join(self):
    left = [(1, 'a'), (2, 'b'), (1, 'c'), (3, 'd')]
    right = [(1, 'x'), (1, 'y'), (2, 'z')]
    self.assertEqual(
        shuffle.join(left, right),
        [(1, ('a', 'x')), (1, ('a', 'y')), (2, ('b', 'z')), (1, ('c', 'x')),
         (1, ('c', 'y'))])

  def test_join_with_empty_side(self):
    self.assertEqual(shuffle.join([(1, 'a')], []), [])
    self.assertEqual(shuffle.join([], [(1, 'a')]), [])

  def test_union(self):
    self.assertEqual(shuffle.union([[1, 2], [], (3, )]), [1, 2, 3])


if __name__ == '__main__':
  logging.getLogger().setLevel(logging.INFO)
  unittest.main()
