"""OpenTelemetry メトリクス定義"""

from __future__ import annotations

from opentelemetry import metrics

_meter = metrics.get_meter("cloth_featureflag", version="0.1.0")

flag_evaluations_total = _meter.create_counter(
    name="flag_evaluations_total",
    description="Total number of flag evaluations",
    unit="1",
)

flag_mutations_total = _meter.create_counter(
    name="flag_mutations_total",
    description="Total number of flag create/update/delete operations",
    unit="1",
)

auth_rejections_total = _meter.create_counter(
    name="auth_rejections_total",
    description="Total number of rejected control-plane requests",
    unit="1",
)
