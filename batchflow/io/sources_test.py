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

"""Unit tests for sources and targets."""

# pytype: skip-file

import logging
import os
import shutil
import tempfile
import unittest

from parameterized import parameterized

from batchflow import typehints
from batchflow.error import PValueError
from batchflow.internal import pickler
from batchflow.io.sources import InMemorySource
from batchflow.io.sources import IntermediateSourceTarget
from batchflow.io.sources import TextFileSource
from batchflow.io.sources import TextFileSourceTarget
from batchflow.io.sources import TextFileTarget


class InMemorySourceTest(unittest.TestCase):
  @parameterized.expand([
      (0, 1, 1),
      (1, 4, 1),
      (5, 2, 2),
      (10, 3, 3),
      (3, 8, 3),
  ])
  def test_split(self, num_values, desired_num_splits, expected_num_splits):
    source = InMemorySource(range(num_values))
    splits = source.split(desired_num_splits)
    self.assertEqual(len(splits), expected_num_splits)
    self.assertEqual(
        [v for split in splits for v in split.read()], list(range(num_values)))
    for split in splits:
      self.assertEqual(split.split(2), [split])

  def test_reads_are_stable(self):
    values = [1, 2]
    source = InMemorySource(values)
    values.append(3)
    self.assertEqual(list(source.read()), [1, 2])
    self.assertEqual(list(source.read()), [1, 2])
    self.assertEqual(len(source), 2)
    self.assertEqual(source.ptype, typehints.anys())

  def test_pickled_copy_is_equal(self):
    source = InMemorySource([1, 2])
    copy = pickler.roundtrip(source)
    self.assertEqual(copy, source)
    self.assertEqual(hash(copy), hash(source))
    self.assertNotEqual(InMemorySource([1, 2]), source)


class IntermediateSourceTargetTest(unittest.TestCase):
  def test_write_then_read(self):
    target = IntermediateSourceTarget('x', typehints.ints())
    self.assertFalse(target.is_materialized)
    with self.assertRaises(PValueError):
      target.read()
    target.write(iter([1, 2, 3]))
    self.assertTrue(target.is_materialized)
    self.assertEqual(list(target.read()), [1, 2, 3])
    self.assertEqual(
        [list(s.read()) for s in target.split(2)], [[1, 2], [3]])
    self.assertEqual(target.display_name(), 'Intermediate(x)')
    target.release()
    self.assertFalse(target.is_materialized)

  def test_pickled_copy_is_an_equal_empty_handle(self):
    target = IntermediateSourceTarget('x')
    target.write([1])
    copy = pickler.roundtrip(target)
    self.assertEqual(copy, target)
    self.assertIn(copy, {target: 'side'})
    self.assertFalse(copy.is_materialized)
    self.assertNotEqual(IntermediateSourceTarget('x'), target)


class TextFileTest(unittest.TestCase):
  def setUp(self):
    self.tmpdir = tempfile.mkdtemp()

  def tearDown(self):
    shutil.rmtree(self.tmpdir)

  def _create_file(self, name, lines):
    path = os.path.join(self.tmpdir, name)
    with open(path, 'w', encoding='utf-8') as f:
      f.write(''.join('%s\n' % line for line in lines))
    return path

  def test_read_pattern(self):
    self._create_file('b.txt', ['3', '4'])
    self._create_file('a.txt', ['1', '2'])
    source = TextFileSource(os.path.join(self.tmpdir, '*.txt'))
    self.assertEqual(list(source.read()), ['1', '2', '3', '4'])
    splits = source.split(4)
    self.assertEqual([list(s.read()) for s in splits], [['1', '2'], ['3', '4']])
    self.assertEqual(source.ptype, typehints.strings())

  def test_crlf_lines(self):
    path = os.path.join(self.tmpdir, 'crlf.txt')
    with open(path, 'wb') as f:
      f.write(b'x\r\ny\r\n')
    self.assertEqual(list(TextFileSource(path).read()), ['x', 'y'])

  def test_no_matching_files(self):
    source = TextFileSource(os.path.join(self.tmpdir, 'missing-*.txt'))
    with self.assertRaises(IOError):
      list(source.read())

  def test_write(self):
    path = os.path.join(self.tmpdir, 'sub', 'out.txt')
    TextFileTarget(path).write([1, 'two'])
    with open(path, encoding='utf-8') as f:
      self.assertEqual(f.read(), '1\ntwo\n')

  def test_same_path_locations_are_equal(self):
    path = os.path.join(self.tmpdir, 'x.txt')
    self.assertEqual(TextFileTarget(path), TextFileSource(path))
    self.assertEqual(hash(TextFileTarget(path)), hash(TextFileSource(path)))
    self.assertEqual(TextFileSourceTarget(path), TextFileSource(path))
    self.assertNotEqual(TextFileSource(path), TextFileSource(path + '.bak'))


if __name__ == '__main__':
  logging.getLogger().setLevel(logging.INFO)
  unittest.main()
