# Copyright 2023 The Matrix.org Foundation C.I.C.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""A very basic keyword check for content we don't want to list."""

import functools
import re
import unicodedata
from typing import Iterable, Pattern, Sequence, Tuple

# Each keyword is a regular expression fragment.
NSFW_WORDS: Sequence[str] = (
    "nsfw",
    "porn",
    "nudes",
    "sex",
    "18+",
    "anal",
    "cp",
    "erica",
    "cum",
    "teen",
    "zoo",
    "hardcore",
    "nude",
    "boy",
    "boys",
    "rape",
    "tween",
    "ericas",
    "hentai",
    "gay",
    "gays",
    "kid",
    "kids",
    "child",
    "childs",
    "pedo.*",
    "loli.*",
    "nfsw",
)


@functools.lru_cache(maxsize=8)
def _compile_keyword_patterns(keywords: Tuple[str, ...]) -> Tuple[Pattern[str], ...]:
    # `\b` alone doesn't match next to the `+` in `18+`, hence the explicit
    # separators.
    return tuple(
        re.compile(r"(\b|_|-|\s|^)%s(,|\b|_|-|\s|$)" % (word,), re.IGNORECASE)
        for word in keywords
    )


def check_text_for_nsfw(text: str, keywords: Iterable[str] = NSFW_WORDS) -> bool:
    """Check whether the given text contains any of the keywords.

    The text is also checked in its NFKD normalised form, so that stylised
    unicode lookalikes of the keywords are caught too.
    """
    patterns = _compile_keyword_patterns(tuple(keywords))
    normalized = unicodedata.normalize("NFKD", text)
    return any(
        pattern.search(text) or pattern.search(normalized) for pattern in patterns
    )
