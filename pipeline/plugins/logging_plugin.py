"""示例插件: 打印批次与记录级事件 (可用于调试)

放置在 pipeline/plugins/ 下即会被自动发现并注册。
"""
from __future__ import annotations
import logging

logger = logging.getLogger(__name__)


def register(hooks):  # hooks: HookManager 实例
    def before_batch(batch_id: str, record_count: int):
        logger.info(f"[PLUGIN] batch {batch_id} start records={record_count}")

    def after_batch(batch_id: str, summary):
        logger.info(
            f"[PLUGIN] batch {batch_id} finished status={dict(summary.reports_by_status)} "
            f"hit_ratio={summary.cache_hit_ratio} cancelled={summary.cancelled}"
        )

    def after_record(batch_id: str, index: int, report):
        logger.info(f"[PLUGIN] <- record #{index} {report.record_id or report.fingerprint[:8]} "
                    f"status={report.status.value} composite={report.composite}")

    def on_cache_hit(batch_id: str, metric: str):
        logger.debug(f"[PLUGIN] (cache hit) {metric}")

    def on_failure(batch_id: str, index: int, error):
        logger.warning(f"[PLUGIN] !! record #{index} {error.scope}:{error.metric or '-'} {error.code}: {error.message}")

    hooks.register_many({
        'before_batch': before_batch,
        'after_batch': after_batch,
        'after_record': after_record,
        'on_cache_hit': on_cache_hit,
        'on_failure': on_failure,
    })
