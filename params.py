"""Decoder for ``k=v&k2=v2`` query strings and urlencoded form bodies."""

from __future__ import annotations

from utils import decode_percent


def decode_params(text: str | None, params: dict[str, str]) -> dict[str, str]:
    """Decode ``&``-joined pairs into ``params`` and return it.

    Pairs without ``=`` are skipped. Keys are trimmed after decoding; a later
    occurrence of a key replaces an earlier one.
    """
    if not text:
        return params

    for pair in text.split("&"):
        if not pair:
            continue
        key, separator, value = pair.partition("=")
        if not separator:
            continue
        params[decode_percent(key).strip()] = decode_percent(value)
    return params
