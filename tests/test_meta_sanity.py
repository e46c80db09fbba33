import importlib

def test_core_modules_and_symbols_exist():
    mods = [
        ("common.settings", ["load_settings", "Settings"]),
        ("common.utils", ["fan_out"]),
        ("ingestion.explorer", ["ExplorerClient", "RetryPolicy"]),
        ("ingestion.decoder", ["decode_batch_all", "enrich_operation", "decode_account"]),
        ("ingestion.classifier", ["classify_call", "classify_batch"]),
        ("etl.pipeline", ["StakingPipeline", "run_staking_pipeline"]),
        ("storage.sqlite_backend", ["SQLiteStorage"]),
    ]
    for mod_name, symbols in mods:
        mod = importlib.import_module(mod_name)
        for sym in symbols:
            assert hasattr(mod, sym), f"{mod_name} missing {sym}"
