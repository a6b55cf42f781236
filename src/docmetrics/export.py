"""
Report 导出
===========

持久化边界：Report -> dict / pandas.DataFrame
"""

from __future__ import annotations

from typing import Iterable, List

import pandas as pd

from .models import Report


def reports_to_frame(reports: Iterable[Report], *, include_labels: bool = False) -> pd.DataFrame:
    """一行一个 Report，一列一个指标值，外加 record_id / fingerprint / composite / confidence / status

    Args:
        reports: Report 序列（保持输入顺序）
        include_labels: 为带标签的指标额外输出 "<metric>_label" 列
    """
    rows: List[dict] = []
    metric_columns: List[str] = []
    for report in reports:
        row = {
            'record_id': report.record_id,
            'fingerprint': report.fingerprint,
            'composite': report.composite,
            'confidence': report.confidence,
            'status': report.status.value,
            'cancelled': report.cancelled,
            'error_count': len(report.errors),
        }
        for name, result in report.results.items():
            if name not in metric_columns:
                metric_columns.append(name)
            row[name] = result.value
            if include_labels and result.label is not None:
                row[f"{name}_label"] = result.label
        rows.append(row)

    base = ['record_id', 'fingerprint', 'composite', 'confidence', 'status', 'cancelled', 'error_count']
    df = pd.DataFrame(rows, columns=None if rows else base + metric_columns)
    if rows:
        extra = [c for c in df.columns if c not in base and c not in metric_columns]
        df = df[base + metric_columns + extra]
    for col in metric_columns + ['composite', 'confidence']:
        if col in df.columns:
            df[col] = pd.to_numeric(df[col], errors='coerce')
    return df
