"""
Romaji detection and kana search variants.

Japanese releases are often tagged with romanized (romaji) text while
MusicBrainz stores the original script. When a romaji query scores poorly the
matcher retries with hiragana and katakana renderings produced here.
"""

from __future__ import annotations

import itertools
import re
import unicodedata
from dataclasses import dataclass
from typing import Dict, List, Optional

HIRAGANA = "hiragana"
KATAKANA = "katakana"

_LATIN = re.compile(r"[A-Za-z]")
_JAPANESE = re.compile(r"[\u3040-\u309F\u30A0-\u30FF\u4E00-\u9FAF\uFF66-\uFF9F]")
_KANA = re.compile(r"[\u3040-\u309F\u30A0-\u30FF]")

_BASE_SYLLABLES = {
    "a": ("あ", "ア"), "i": ("い", "イ"), "u": ("う", "ウ"), "e": ("え", "エ"), "o": ("お", "オ"),
    "ka": ("か", "カ"), "ki": ("き", "キ"), "ku": ("く", "ク"), "ke": ("け", "ケ"), "ko": ("こ", "コ"),
    "kya": ("きゃ", "キャ"), "kyu": ("きゅ", "キュ"), "kyo": ("きょ", "キョ"),
    "ga": ("が", "ガ"), "gi": ("ぎ", "ギ"), "gu": ("ぐ", "グ"), "ge": ("げ", "ゲ"), "go": ("ご", "ゴ"),
    "gya": ("ぎゃ", "ギャ"), "gyu": ("ぎゅ", "ギュ"), "gyo": ("ぎょ", "ギョ"),
    "sa": ("さ", "サ"), "shi": ("し", "シ"), "su": ("す", "ス"), "se": ("せ", "セ"), "so": ("そ", "ソ"),
    "sha": ("しゃ", "シャ"), "shu": ("しゅ", "シュ"), "sho": ("しょ", "ショ"),
    "za": ("ざ", "ザ"), "ji": ("じ", "ジ"), "zu": ("ず", "ズ"), "ze": ("ぜ", "ゼ"), "zo": ("ぞ", "ゾ"),
    "ja": ("じゃ", "ジャ"), "ju": ("じゅ", "ジュ"), "jo": ("じょ", "ジョ"),
    "ta": ("た", "タ"), "chi": ("ち", "チ"), "tsu": ("つ", "ツ"), "te": ("て", "テ"), "to": ("と", "ト"),
    "cha": ("ちゃ", "チャ"), "chu": ("ちゅ", "チュ"), "cho": ("ちょ", "チョ"),
    "da": ("だ", "ダ"), "di": ("ぢ", "ヂ"), "du": ("づ", "ヅ"), "de": ("で", "デ"), "do": ("ど", "ド"),
    "na": ("な", "ナ"), "ni": ("に", "ニ"), "nu": ("ぬ", "ヌ"), "ne": ("ね", "ネ"), "no": ("の", "ノ"),
    "nya": ("にゃ", "ニャ"), "nyu": ("にゅ", "ニュ"), "nyo": ("にょ", "ニョ"),
    "ha": ("は", "ハ"), "hi": ("ひ", "ヒ"), "fu": ("ふ", "フ"), "he": ("へ", "ヘ"), "ho": ("ほ", "ホ"),
    "hya": ("ひゃ", "ヒャ"), "hyu": ("ひゅ", "ヒュ"), "hyo": ("ひょ", "ヒョ"),
    "ba": ("ば", "バ"), "bi": ("び", "ビ"), "bu": ("ぶ", "ブ"), "be": ("べ", "ベ"), "bo": ("ぼ", "ボ"),
    "bya": ("びゃ", "ビャ"), "byu": ("びゅ", "ビュ"), "byo": ("びょ", "ビョ"),
    "pa": ("ぱ", "パ"), "pi": ("ぴ", "ピ"), "pu": ("ぷ", "プ"), "pe": ("ぺ", "ペ"), "po": ("ぽ", "ポ"),
    "pya": ("ぴゃ", "ピャ"), "pyu": ("ぴゅ", "ピュ"), "pyo": ("ぴょ", "ピョ"),
    "ma": ("ま", "マ"), "mi": ("み", "ミ"), "mu": ("む", "ム"), "me": ("め", "メ"), "mo": ("も", "モ"),
    "mya": ("みゃ", "ミャ"), "myu": ("みゅ", "ミュ"), "myo": ("みょ", "ミョ"),
    "ya": ("や", "ヤ"), "yu": ("ゆ", "ユ"), "yo": ("よ", "ヨ"),
    "ra": ("ら", "ラ"), "ri": ("り", "リ"), "ru": ("る", "ル"), "re": ("れ", "レ"), "ro": ("ろ", "ロ"),
    "rya": ("りゃ", "リャ"), "ryu": ("りゅ", "リュ"), "ryo": ("りょ", "リョ"),
    "wa": ("わ", "ワ"), "wi": ("ゐ", "ヰ"), "we": ("ゑ", "ヱ"), "wo": ("を", "ヲ"),
    "n": ("ん", "ン"),
}

ROMAJI_TO_HIRAGANA: Dict[str, str] = {key: pair[0] for key, pair in _BASE_SYLLABLES.items()}
ROMAJI_TO_HIRAGANA.update(
    {
        "tta": "った", "tte": "って", "tto": "っと", "ttu": "っつ",
        "kka": "っか", "kki": "っき", "kku": "っく", "kke": "っけ", "kko": "っこ",
        "ssa": "っさ", "ssu": "っす", "sse": "っせ", "sso": "っそ",
        "ppa": "っぱ", "ppi": "っぴ", "ppu": "っぷ", "ppe": "っぺ", "ppo": "っぽ",
    }
)

ROMAJI_TO_KATAKANA: Dict[str, str] = {key: pair[1] for key, pair in _BASE_SYLLABLES.items()}
ROMAJI_TO_KATAKANA.update(
    {
        "va": "ヴァ", "vi": "ヴィ", "vu": "ヴ", "ve": "ヴェ", "vo": "ヴォ",
        "fa": "ファ", "fi": "フィ", "fe": "フェ", "fo": "フォ",
        "-": "ー",
    }
)

_LONGEST_SYLLABLE = 3


# Hepburn marks long vowels with a macron (or a circumflex in older tags).
_LONG_VOWEL_MARKS = {"\u0304", "\u0302"}
_HIRAGANA_LONG_VOWEL = {"a": "あ", "i": "い", "u": "う", "e": "い", "o": "う"}


def is_romaji(text: Optional[str]) -> bool:
    """True when text has Latin letters and nothing from the Japanese script ranges."""
    if not text:
        return False
    return bool(_LATIN.search(text)) and not _JAPANESE.search(text)


def _convert(text: str, table: Dict[str, str], long_vowel: bool = False) -> str:
    source = unicodedata.normalize("NFD", text.lower().strip())
    result: list[str] = []
    vowel = ""
    i = 0
    while i < len(source):
        for size in range(_LONGEST_SYLLABLE, 0, -1):
            chunk = source[i : i + size]
            if len(chunk) == size and chunk in table:
                result.append(table[chunk])
                vowel = chunk[-1]
                i += size
                break
        else:
            ch = source[i]
            if ch in _LONG_VOWEL_MARKS:
                result.append("ー" if long_vowel else _HIRAGANA_LONG_VOWEL.get(vowel, ""))
            elif not unicodedata.combining(ch):
                result.append(ch)
            vowel = ""
            i += 1
    return unicodedata.normalize("NFC", "".join(result))


def romaji_to_hiragana(text: Optional[str]) -> str:
    if not text:
        return ""
    return _convert(text, ROMAJI_TO_HIRAGANA)


def romaji_to_katakana(text: Optional[str]) -> str:
    if not text:
        return ""
    return _convert(text, ROMAJI_TO_KATAKANA, long_vowel=True)


def script_variants(text: Optional[str]) -> List[tuple[str, Optional[str]]]:
    """Return ``(rendering, script)`` pairs; the first entry is always the input."""
    original = text or ""
    variants: List[tuple[str, Optional[str]]] = [(original, None)]
    if not is_romaji(original):
        return variants
    seen = {original}
    for script, converter in ((HIRAGANA, romaji_to_hiragana), (KATAKANA, romaji_to_katakana)):
        rendered = converter(original)
        # Only keep renderings where at least one syllable was segmented.
        if not _KANA.search(rendered) or rendered in seen:
            continue
        seen.add(rendered)
        variants.append((rendered, script))
    return variants


@dataclass(frozen=True, slots=True)
class SearchVariant:
    artist: str
    album: str
    title: str
    method: str

    def query(self, fields: tuple[str, ...]) -> Dict[str, str]:
        values = {"artist": self.artist, "album": self.album, "title": self.title}
        return {name: values[name] for name in fields}


def generate_search_variants(
    artist: Optional[str] = None,
    album: Optional[str] = None,
    title: Optional[str] = None,
) -> List[SearchVariant]:
    """Cross product of per-field renderings; index 0 is the untouched original."""
    variants: List[SearchVariant] = []
    per_field = [script_variants(artist), script_variants(album), script_variants(title)]
    for (a, a_script), (al, al_script), (t, t_script) in itertools.product(*per_field):
        scripts = [s for s in (a_script, al_script, t_script) if s]
        variants.append(SearchVariant(artist=a, album=al, title=t, method=_method_label(scripts)))
    return variants


def _method_label(scripts: List[str]) -> str:
    if not scripts:
        return "original"
    unique = [s for s in (HIRAGANA, KATAKANA) if s in scripts]
    return "+".join(unique)
