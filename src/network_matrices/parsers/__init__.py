"""Case readers producing `(buses, branches)` topology records."""
