from __future__ import annotations

import pytest

from deepdive.services.prompt_store import available_locales, render_prompt, resolve_prompt


def test_render_prompt_substitutes_template_values():
    prompt = render_prompt(
        "recall.user",
        title="Metformin and kidney function",
        date="2026-02-21",
        conversation="user: hi",
        query="what did we find?",
    )
    assert "2026-02-21" in prompt
    assert '"Metformin and kidney function"' in prompt


def test_render_prompt_raises_for_unknown_key():
    with pytest.raises(KeyError):
        render_prompt("missing.prompt.key")


def test_render_prompt_reports_missing_value():
    with pytest.raises(KeyError, match="conversation"):
        render_prompt("metadata.user")


def test_locale_override_falls_back_to_default():
    assert "tr" in available_locales()
    turkish = render_prompt("recall.system", locale="tr-TR", date="2026-02-21")
    assert "Türkçe" in turkish
    assert "2026-02-21" in turkish
    assert resolve_prompt("synthesis.system", locale="tr") == resolve_prompt("synthesis.system")
    assert resolve_prompt("recall.system", locale="de") == resolve_prompt("recall.system")
