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

"""Unit tests for the collection handles."""

# pytype: skip-file

import logging
import unittest

import hamcrest as hc

from batchflow import typehints
from batchflow.graph import NodeKind
from batchflow.internal import pickler
from batchflow.io.sources import IntermediateSourceTarget
from batchflow.pipeline import Pipeline
from batchflow.pvalue import PCollection
from batchflow.pvalue import PDone
from batchflow.pvalue import PGroupedTable
from batchflow.pvalue import PTable
from batchflow.pvalue import _InvalidUnpicklableCollection

_TABLE = typehints.table_of(typehints.strings(), typehints.ints())


class PValueTest(unittest.TestCase):
  def setUp(self):
    self.pipeline = Pipeline('InMemoryBackend')

  def test_handle_classes(self):
    words = self.pipeline.create(['a', 'bb'], ptype=typehints.strings())
    self.assertIs(type(words), PCollection)
    table = words.by(len, typehints.ints())
    self.assertIsInstance(table, PTable)
    grouped = table.group_by_key()
    self.assertIsInstance(grouped, PGroupedTable)
    self.assertIsInstance(grouped.ungroup(), PTable)
    self.assertNotIsInstance(grouped.ungroup(), PGroupedTable)
    self.assertIsInstance(
        words.write(self.pipeline.create_intermediate_output()), PDone)

  def test_label_and_producer(self):
    words = self.pipeline.create(['a'], label='Words')
    self.assertEqual('Words', words.label)
    self.assertEqual(NodeKind.SOURCE_READ, words.producer.kind)
    self.assertIs(self.pipeline, words.pipeline)
    self.assertEqual('PCollection[Words]', str(words))

  def test_helper_labels_are_unique(self):
    table = self.pipeline.create([('a', 1)], ptype=_TABLE)
    self.assertEqual('Keys', table.keys().label)
    self.assertEqual('Keys_1', table.keys().label)
    self.assertEqual('Ungroup', table.group_by_key().ungroup().label)
    self.assertEqual('Custom', table.values(label='Custom').label)

  def test_key_value_helpers(self):
    table = self.pipeline.create([('a', 1), ('b', 2), ('a', 3)], ptype=_TABLE)
    self.assertEqual(['a', 'a', 'b'], sorted(table.keys().materialize()))
    self.assertEqual([1, 2, 3], sorted(table.values().materialize()))
    self.assertEqual([('a', 10), ('a', 30), ('b', 20)],
                     sorted(
                         table.map_values(lambda v: v * 10).materialize()))
    self.assertEqual(typehints.strings(), table.keys().ptype)
    self.assertEqual(typehints.ints(), table.values().ptype)

  def test_by(self):
    words = self.pipeline.create(['a', 'bb', 'cc'], ptype=typehints.strings())
    table = words.by(len, typehints.ints())
    self.assertEqual('By(len)', table.label)
    self.assertEqual(
        typehints.table_of(typehints.ints(), typehints.strings()), table.ptype)
    self.assertEqual({1: ['a'], 2: ['bb', 'cc']}, table.materialize_to_map())

  def test_group_and_ungroup(self):
    table = self.pipeline.create([('a', 1), ('b', 2), ('a', 3)], ptype=_TABLE)
    grouped = dict(
        (k, sorted(vs)) for k, vs in table.group_by_key().materialize())
    self.assertEqual({'a': [1, 3], 'b': [2]}, grouped)
    self.assertEqual([('a', 1), ('a', 3), ('b', 2)],
                     sorted(table.group_by_key().ungroup().materialize()))

  def test_apply_inserts_self(self):
    from batchflow.transforms.core import Map
    numbers = self.pipeline.create([1, 2])
    doubled = numbers.apply(Map(lambda x: 2 * x), label='Double')
    self.assertEqual('Double', doubled.label)
    self.assertEqual([2, 4], doubled.materialize())

  def test_pickled_collection_is_a_placeholder(self):
    numbers = self.pipeline.create([1, 2])
    hc.assert_that(
        pickler.roundtrip(numbers),
        hc.instance_of(_InvalidUnpicklableCollection))

  def test_as_side_input_of_read_is_its_source(self):
    numbers = self.pipeline.create([1, 2])
    self.assertIs(numbers.producer.source, numbers.as_side_input())

  def test_as_side_input_of_computed_collection(self):
    doubled = self.pipeline.create([1, 2]).map(lambda x: 2 * x)
    side = doubled.as_side_input()
    self.assertIsInstance(side, IntermediateSourceTarget)
    self.assertIs(side, doubled.as_side_input())


if __name__ == '__main__':
  logging.getLogger().setLevel(logging.INFO)
  unittest.main()
