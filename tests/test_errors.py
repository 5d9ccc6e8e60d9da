from __future__ import annotations

from airchat.errors import EngineInitError, GenerationError, TransferError


def test_describe_includes_stage_and_cause():
    cause = OSError("disk full")
    err = TransferError("Failed to fetch https://host/m.bin", locator="https://host/m.bin", cause=cause)
    assert err.describe() == "[transfer] Failed to fetch https://host/m.bin (caused by OSError: disk full)"


def test_describe_skips_cause_already_in_message():
    err = EngineInitError("Failed to load engine: oom", cause=MemoryError("oom"))
    assert err.describe() == "[engine_load] Failed to load engine: oom"


def test_describe_without_cause():
    assert GenerationError("boom").describe() == "[generate] boom"
