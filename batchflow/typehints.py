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

"""Record type descriptors carried by sources, targets and collections.

A PType only names the shape of the records flowing through a collection. It
does not encode or decode anything; backends consult it for diagnostics and
the collection API uses it to decide whether a step yields a keyed table.
"""

# pytype: skip-file

__all__ = [
    'PType',
    'PTableType',
    'PGroupedTableType',
    'anys',
    'strings',
    'ints',
    'floats',
    'pairs',
    'table_of',
    'grouped_table_of',
]


class PType(object):
  """Describes the records of an unkeyed collection."""

  is_table = False

  def __init__(self, name, python_type=object):
    self.name = name
    self.python_type = python_type

  def validate(self, record):
    """Returns whether the record conforms to this type."""
    return isinstance(record, self.python_type)

  def __eq__(self, other):
    return (
        type(self) == type(other) and self.name == other.name and
        self.python_type == other.python_type)

  def __hash__(self):
    return hash((type(self), self.name))

  def __repr__(self):
    return 'PType[%s]' % self.name


class PTableType(PType):
  """Describes the (key, value) records of a keyed table."""

  is_table = True

  def __init__(self, key_type, value_type):
    super().__init__(
        'Table[%s, %s]' % (key_type.name, value_type.name), tuple)
    self.key_type = key_type
    self.value_type = value_type

  def validate(self, record):
    return (
        isinstance(record, tuple) and len(record) == 2 and
        self.key_type.validate(record[0]) and
        self.value_type.validate(record[1]))

  def __eq__(self, other):
    return (
        type(self) == type(other) and self.key_type == other.key_type and
        self.value_type == other.value_type)

  def __hash__(self):
    return hash((type(self), self.key_type, self.value_type))

  def __repr__(self):
    return 'PTableType[%s, %s]' % (self.key_type.name, self.value_type.name)


class PGroupedTableType(PTableType):
  """Describes the (key, [values]) records produced by a group-by-key."""
  def validate(self, record):
    return (
        isinstance(record, tuple) and len(record) == 2 and
        self.key_type.validate(record[0]) and
        all(self.value_type.validate(v) for v in record[1]))

  def __repr__(self):
    return 'PGroupedTableType[%s, %s]' % (
        self.key_type.name, self.value_type.name)


class _PairType(PType):
  def __init__(self, first, second):
    super().__init__('Pair[%s, %s]' % (first.name, second.name), tuple)
    self.first = first
    self.second = second

  def validate(self, record):
    return (
        isinstance(record, tuple) and len(record) == 2 and
        self.first.validate(record[0]) and self.second.validate(record[1]))


_ANY = PType('Any')
_STRINGS = PType('str', str)
_INTS = PType('int', int)
_FLOATS = PType('float', (int, float))


def anys():
  return _ANY


def strings():
  return _STRINGS


def ints():
  return _INTS


def floats():
  return _FLOATS


def pairs(first, second):
  return _PairType(first, second)


def table_of(key_type, value_type):
  return PTableType(key_type, value_type)


def grouped_table_of(key_type, value_type):
  return PGroupedTableType(key_type, value_type)
