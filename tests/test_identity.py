from cloud_store.identity import derive_user_id, environment_signals, load_or_create_user_id

SIGNALS = {
    'agent': "python/3.12.1 (Linux 6.1)",
    'language': "en_US",
    'geometry': "120x40",
    'tz_offset': "-60",
    'platform': "linux",
}


def test_user_id_is_stable_for_same_signals():
    assert derive_user_id(SIGNALS) == derive_user_id(dict(SIGNALS))
    assert derive_user_id(SIGNALS).startswith("user_")
    assert derive_user_id(SIGNALS) != derive_user_id(dict(SIGNALS, geometry="80x24"))


def test_environment_signals_cover_every_field():
    signals = environment_signals()
    assert set(signals) == {'agent', 'language', 'geometry', 'tz_offset', 'platform'}


def test_identity_is_cached(tmp_path):
    first = load_or_create_user_id(tmp_path, SIGNALS)
    second = load_or_create_user_id(tmp_path, dict(SIGNALS, platform="darwin"))
    assert first == second
    assert (tmp_path / "user_id").read_text().strip() == first


def test_malformed_cache_is_replaced(tmp_path):
    (tmp_path / "user_id").write_text("garbage")
    assert load_or_create_user_id(tmp_path, SIGNALS) == derive_user_id(SIGNALS)
