"""Prometheus 导出插件

功能:
- 记录批次耗时 (Histogram)
- 记录处理的记录数，按报告状态 (Counter)
- 记录缓存命中，按指标 (Counter)
- 记录失败，按指标与错误码 (Counter)
- 设置 PIPELINE_PROM_PORT 时启动 start_http_server
"""
from __future__ import annotations
import logging
import os

from prometheus_client import Counter, Histogram, start_http_server

logger = logging.getLogger(__name__)

BATCH_DURATION = Histogram(
    "docmetrics_batch_duration_seconds",
    "批次执行耗时(秒)",
    buckets=(0.01, 0.05, 0.1, 0.2, 0.5, 1, 2, 5, 10, 30, 60, 120),
)
RECORDS = Counter(
    "docmetrics_records_total",
    "已处理记录数",
    ["status"],
)
CACHE_HIT = Counter(
    "docmetrics_metric_cache_hit_total",
    "指标缓存命中次数",
    ["metric"],
)
FAILURES = Counter(
    "docmetrics_failure_total",
    "失败次数",
    ["metric", "code"],
)
SERVER_STARTED = False


def register(hooks):  # hooks: HookManager
    global SERVER_STARTED
    port = os.getenv("PIPELINE_PROM_PORT")
    if port and not SERVER_STARTED:
        try:
            start_http_server(int(port))
            SERVER_STARTED = True
            logger.info(f"📈 Prometheus 指标暴露端口: {port}")
        except OSError as e:  # 端口占用等
            logger.warning(f"Prometheus 端口启动失败: {e}")

    def after_record(batch_id: str, index: int, report):
        RECORDS.labels(report.status.value).inc()

    def on_cache_hit(batch_id: str, metric: str):
        CACHE_HIT.labels(metric).inc()

    def on_failure(batch_id: str, index: int, error):
        FAILURES.labels(error.metric or "-", error.code).inc()

    def after_batch(batch_id: str, summary):
        BATCH_DURATION.observe(summary.duration_seconds)

    hooks.register_many({
        'after_record': after_record,
        'on_cache_hit': on_cache_hit,
        'on_failure': on_failure,
        'after_batch': after_batch,
    })
