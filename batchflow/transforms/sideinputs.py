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

"""Utilities for handling side inputs inside a DoFn."""

# pytype: skip-file

import types

__all__ = ['build_multimap']


def build_multimap(records):
  """Returns a read-only mapping of key to the tuple of its values.

  Values keep the order in which their records were read.
  """
  multimap = {}
  for key, value in records:
    multimap.setdefault(key, []).append(value)
  return types.MappingProxyType({k: tuple(v) for k, v in multimap.items()})
