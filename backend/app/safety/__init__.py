"""
safety — Night-safety risk scoring and routing engine.

Sub-modules:
    geo            — Coordinates, distances, bbox matching, night hours
    models         — Reports, route segments, advisory overlays
    scoring        — Priority score and badge of a single report
    density_grid   — Point-to-cell heatmap aggregation
    danger_zones   — Risk-weighted clusters of recent reports
    segment_risk   — Night-time risk ranking of catalogued segments
    route_synth    — Free-space route synthesis around danger zones
    confirmations  — Once-per-user report confirmation transaction
    orm            — Storage rows backing the confirmation transaction
"""
