"""Stack migration engine: archive codec, target reconstruction, config
rewriting and the export/import/clone/copy orchestrators.

Orchestrators are imported from their own modules; this package stays light
because the Prometheus client depends on :mod:`.targets`.
"""
