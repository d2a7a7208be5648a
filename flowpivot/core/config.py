#!/usr/bin/env python3
"""
Engine settings.
Defaults match the dashboard's limits; FLOWPIVOT_* environment variables override them.
"""

import os
import logging
from dataclasses import dataclass, fields
from typing import Mapping, Optional

logger = logging.getLogger('flowpivot.config')


@dataclass
class EngineSettings:
    """Tunable limits and defaults for compilation and result shaping"""
    default_layer: Optional[str] = None  # None: blank layer is rejected
    time_zone: str = 'UTC'
    timestamp_without_tz_is_utc: bool = True
    chart_max_columns: int = 5
    chart_max_columns_multiple_pie: int = 6
    chart_max_rows: int = 5
    default_top_n: int = 5
    heatmap_max_x: int = 50
    pivot_max_columns: int = 50
    pivot_default_limit: int = 50
    pivot_max_limit: int = 1000
    heatmap_default_limit: int = 100
    heatmap_max_limit: int = 1000
    distinct_default_limit: int = 50
    distinct_max_limit: int = 200
    grid_default_limit: int = 100
    grid_max_limit: int = 1000
    duckdb_threads: Optional[int] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'EngineSettings':
        """Build settings from FLOWPIVOT_<FIELD_NAME> environment variables"""
        environ = os.environ if environ is None else environ
        settings = cls()
        for f in fields(cls):
            raw = environ.get(f"FLOWPIVOT_{f.name.upper()}")
            if raw is None or raw == '':
                continue
            current = getattr(settings, f.name)
            try:
                if isinstance(current, bool):
                    value = raw.strip().lower() in ('1', 'true', 'yes', 'on')
                elif isinstance(current, int) or f.name == 'duckdb_threads':
                    value = int(raw)
                else:
                    value = raw.strip()
            except ValueError:
                raise ValueError(f"Invalid value for FLOWPIVOT_{f.name.upper()}: {raw}")
            setattr(settings, f.name, value)
            logger.debug(f"Setting {f.name} from environment: {value}")
        return settings
