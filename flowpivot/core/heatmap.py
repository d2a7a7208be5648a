#!/usr/bin/env python3
"""
Heatmap table pages.

A page holds one slice of Y categories against the full X category list.
Cells without data are None; page min/max are taken over populated cells
only so clients can scale colors per page. Pages can be rendered to the
terminal with rich.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from rich.table import Table
from rich.text import Text


@dataclass
class HeatmapRow:
    y_category: str
    cells: List[Optional[float]]
    row_total: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {'yCategory': self.y_category, 'cells': self.cells, 'rowTotal': self.row_total}


@dataclass
class HeatmapPage:
    """One Y page of a row x column metric matrix"""
    x_field: Optional[str] = None
    y_field: Optional[str] = None
    x_categories: List[str] = field(default_factory=list)
    rows: List[HeatmapRow] = field(default_factory=list)
    total_row_count: int = 0
    offset: int = 0
    limit: int = 0
    page_min: Optional[float] = None
    page_max: Optional[float] = None

    @classmethod
    def empty(cls, x_field: Optional[str] = None, y_field: Optional[str] = None) -> 'HeatmapPage':
        """Shape returned when nothing matches: no categories, zero counts, null min/max"""
        return cls(x_field=x_field, y_field=y_field)

    @classmethod
    def assemble(cls, x_field: str, y_field: str, x_categories: List[str], y_categories: List[str],
                 cells: Iterable[Tuple[str, str, Any]], total_row_count: int,
                 offset: int, limit: int) -> 'HeatmapPage':
        """Place (x key, y key, value) triples into rows ordered like ``y_categories``"""
        x_index = {key: i for i, key in enumerate(x_categories)}
        y_index = {key: i for i, key in enumerate(y_categories)}
        matrix: List[List[Optional[float]]] = [[None] * len(x_categories) for _ in y_categories]

        for x_key, y_key, value in cells:
            xi, yi = x_index.get(x_key), y_index.get(y_key)
            if xi is None or yi is None or value is None:
                continue
            matrix[yi][xi] = float(value)

        populated = [v for row in matrix for v in row if v is not None]
        rows = [
            HeatmapRow(y_key, matrix[i], float(sum(v for v in matrix[i] if v is not None)))
            for i, y_key in enumerate(y_categories)
        ]
        return cls(
            x_field=x_field,
            y_field=y_field,
            x_categories=list(x_categories),
            rows=rows,
            total_row_count=total_row_count,
            offset=offset,
            limit=limit,
            page_min=min(populated) if populated else None,
            page_max=max(populated) if populated else None,
        )

    @property
    def y_categories(self) -> List[str]:
        return [row.y_category for row in self.rows]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'xField': self.x_field,
            'yField': self.y_field,
            'xCategories': self.x_categories,
            'rows': [row.to_dict() for row in self.rows],
            'totalRowCount': self.total_row_count,
            'offset': self.offset,
            'limit': self.limit,
            'pageMin': self.page_min,
            'pageMax': self.page_max,
        }


class HeatmapRenderer:
    """Render a heatmap page as a colored rich table"""

    # Unicode block characters for intensity levels
    INTENSITY_CHARS = [' ', '░', '▒', '▓', '█']

    # Red palette for intensity, low to high
    RED_PALETTE_RICH = {
        0: "color(15)",   # White (no data)
        1: "color(226)",  # Light yellow
        2: "color(220)",  # Yellow
        3: "color(214)",  # Orange-yellow
        4: "color(208)",  # Orange
        5: "color(202)",  # Red-orange
        6: "color(196)",  # Red
    }

    def __init__(self, cell_width: int = 10, show_values: bool = True):
        self.cell_width = cell_width
        self.show_values = show_values

    def level(self, value: Optional[float], low: Optional[float], high: Optional[float]) -> int:
        """Palette level 1-6 for a populated cell, 0 for an empty one"""
        if value is None or low is None or high is None:
            return 0
        if high <= low:
            return len(self.RED_PALETTE_RICH) - 1
        ratio = (value - low) / (high - low)
        return 1 + min(int(ratio * (len(self.RED_PALETTE_RICH) - 1)), len(self.RED_PALETTE_RICH) - 2)

    def render(self, page: HeatmapPage) -> Table:
        title = f"{page.y_field} x {page.x_field}" if page.x_field else "heatmap"
        table = Table(title=title, show_lines=False)
        table.add_column(page.y_field or '', no_wrap=True)
        for x_key in page.x_categories:
            table.add_column(x_key[:self.cell_width], justify='right')
        table.add_column('total', justify='right')

        for row in page.rows:
            cells = [Text(row.y_category)]
            for value in row.cells:
                level = self.level(value, page.page_min, page.page_max)
                style = f"on {self.RED_PALETTE_RICH[level]}" if level else ''
                if value is None:
                    label = ''
                elif self.show_values:
                    label = f"{value:,.0f}" if float(value).is_integer() else f"{value:,.2f}"
                else:
                    label = self.INTENSITY_CHARS[min(level, len(self.INTENSITY_CHARS) - 1)]
                cells.append(Text(label, style=style))
            cells.append(Text(f"{row.row_total:,.0f}"))
            table.add_row(*cells)

        table.caption = (f"rows {page.offset + 1}-{page.offset + len(page.rows)} of {page.total_row_count}"
                         if page.rows else "no data")
        return table
