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

"""Pickler for values, functions, and classes.

For internal use only. No backwards compatibility guarantees.

Uses the cloudpickle library so that lambdas, closures and classes defined in
interactive sessions can be shipped to the partitions that run them. Pickles
are base64-encoded so they can be logged and embedded as plain text.
"""

# pytype: skip-file

import base64
import bz2
import threading
import zlib

import cloudpickle

__all__ = ['dumps', 'loads', 'roundtrip']

# Pickling, especially unpickling, causes broken module imports on Python 3
# if executed concurrently, see: http://bugs.python.org/issue38884.
_pickle_lock = threading.RLock()


def dumps(o, use_zlib=False):
  # type: (...) -> bytes

  """For internal use only; no backwards-compatibility guarantees."""
  with _pickle_lock:
    s = cloudpickle.dumps(o)

  if use_zlib:
    c = zlib.compress(s, 9)
  else:
    c = bz2.compress(s, compresslevel=9)
  del s  # Free up some possibly large and no-longer-needed memory.

  return base64.b64encode(c)


def loads(encoded, use_zlib=False):
  """For internal use only; no backwards-compatibility guarantees."""
  c = base64.b64decode(encoded)
  if use_zlib:
    s = zlib.decompress(c)
  else:
    s = bz2.decompress(c)
  del c  # Free up some possibly large and no-longer-needed memory.

  with _pickle_lock:
    return cloudpickle.loads(s)


def roundtrip(o):
  """Returns an independent copy of o made through a pickle round trip."""
  return loads(dumps(o))
