#!/usr/bin/env python3
"""
Text-based testing interface for flowpivot.
Loads layer sample files from a data directory and prints the pivot,
distinct-values and grid views as plaintext tables.
"""

import argparse
import json
import sys
import os
import logging
from pathlib import Path
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Dict, Any
from tabulate import tabulate
from rich.console import Console

# Add repository root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from flowpivot.core.config import EngineSettings
from flowpivot.core.data_source import FlowDataSource
from flowpivot.core.distinct_values import DistinctValuesResolver
from flowpivot.core.errors import FlowPivotError
from flowpivot.core.grid import GridQueryService
from flowpivot.core.heatmap import HeatmapPage, HeatmapRenderer
from flowpivot.core.layers import SchemaCatalog, resolve_layer
from flowpivot.core.pivot_engine import PivotAggregationEngine
from flowpivot.core.pivot_table import PivotTableService
from flowpivot.core.query_engine import QueryEngine

VIEWS = ('chart', 'breakdown', 'heatmap', 'drilldown', 'distinct', 'pivot', 'grid', 'fields')


class FlowPivotTester:
    """Test harness for flowpivot views without a web frontend"""

    def __init__(self, datadir: Optional[Path], duckdb_threads: Optional[int] = None,
                 settings: Optional[EngineSettings] = None, data_source: Optional[FlowDataSource] = None):
        """Initialize test harness; an existing data source skips file loading"""
        self.settings = settings or EngineSettings()
        self.logger = logging.getLogger('flowpivot.test')
        if data_source is None:
            data_source = FlowDataSource(datadir, duckdb_threads=duckdb_threads)
            loaded = data_source.load_layers()
            self.logger.info(f"Loaded layers: {loaded}")
        self.data_source = data_source
        self.catalog = SchemaCatalog(data_source)
        self.engine = QueryEngine(data_source)
        self.pivot = PivotAggregationEngine(self.engine, self.catalog, self.settings)
        self.distinct = DistinctValuesResolver(self.engine, self.catalog, self.settings)
        self.pivot_table = PivotTableService(self.engine, self.catalog, self.settings)
        self.grid = GridQueryService(self.engine, self.catalog, self.settings)

    def run_view(self, view: str, request: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run one view and return a results dictionary.

        Returns:
            {'view', 'request', 'response'} or {'view', 'error'} for
            validation and execution errors
        """
        handlers = {
            'chart': lambda r: self.pivot.chart(r).to_dict(),
            'breakdown': lambda r: self.pivot.chart_by_column(r).to_dict(),
            'heatmap': lambda r: self.pivot.heatmap_table(r).to_dict(),
            'drilldown': lambda r: self.pivot.drilldown_time_series(r).to_dict(),
            'distinct': lambda r: self.distinct.resolve(r).to_dict(),
            'pivot': self._run_pivot,
            'grid': lambda r: self.grid.search(r).to_dict(),
            'fields': self._run_fields,
        }
        self.logger.info(f"Running {view}: {json.dumps(request, default=str)}")
        try:
            response = handlers[view](request)
        except FlowPivotError as e:
            self.logger.error(f"{view} failed: {e}")
            return {'view': view, 'error': str(e)}
        return {'view': view, 'request': request, 'response': response}

    def _run_pivot(self, request: Dict[str, Any]) -> Dict[str, Any]:
        if request.get('rowField'):
            return self.pivot_table.row_items(request)
        return self.pivot_table.query(request)

    def _run_fields(self, request: Dict[str, Any]) -> Dict[str, Any]:
        layer = resolve_layer(request.get('layer'), self.settings.default_layer)
        return {'layer': layer.code, 'fields': [m.to_dict() for m in self.catalog.field_meta(layer)]}

    def print_results(self, results: Dict[str, Any], format: str = 'grid'):
        """
        Print results in plaintext table format.

        Args:
            results: run_view() results dictionary
            format: Table format (grid, simple, plain, html, etc.)
        """
        if 'error' in results:
            print(f"ERROR: {results['error']}", file=sys.stderr)
            return

        view = results['view']
        response = results['response']
        print(f"\n=== {view.upper()} ===")

        if view == 'chart':
            for series in response['series']:
                print(f"\nSeries: {series['label']}")
                rows = [[y] + values for y, values in zip(response['yCategories'], series['values'])]
                print(tabulate(rows, headers=[response['yField']] + response['xCategories'], tablefmt=format))
            if not response['series']:
                print("No data returned")

        elif view == 'breakdown':
            for chart in response['charts']:
                print(f"\n--- {response['colField']} = {chart['colKey']} ---")
                print(tabulate(list(zip(chart['rowCategories'], chart['values'])),
                               headers=[response['rowField'], response['metricLabel']], tablefmt=format))

        elif view == 'heatmap':
            page = HeatmapPage.assemble(
                response['xField'], response['yField'], response['xCategories'],
                [r['yCategory'] for r in response['rows']],
                ((x, r['yCategory'], v) for r in response['rows']
                 for x, v in zip(response['xCategories'], r['cells'])),
                response['totalRowCount'], response['offset'], response['limit'],
            )
            Console().print(HeatmapRenderer().render(page))

        elif view == 'drilldown':
            print(f"Global median: {response['globalMedian']}")
            rows = []
            for series in response['series']:
                for point in series['points']:
                    rows.append([series['rowKey'], point['ts'], point['value'], series['median']])
            print(tabulate(rows, headers=['row', 'ts (ms)', 'value', 'median'], tablefmt=format))

        elif view == 'distinct':
            print(f"Total: {response['totalCount']}, more: {response['hasMore']}")
            print(tabulate([[v] for v in response['items']], headers=['value'], tablefmt=format))
            if response['nextCursor']:
                print(f"Next cursor: {response['nextCursor']}")

        elif view == 'pivot' and 'items' in response:
            print(response['rowLabel'])
            self._print_cells(response['items'], 'valueLabel', format)

        elif view == 'pivot':
            print(response['summary']['rowCountText'])
            for group in response['rowGroups']:
                print(f"\n--- {group['displayLabel']} ---")
                self._print_cells([{'valueLabel': 'total', 'cells': group['cells']}], 'valueLabel', format)

        elif view == 'grid':
            headers = [c['name'] for c in response['columns']]
            print(f"Rows {response['offset'] + 1}-{response['offset'] + len(response['rows'])} "
                  f"of {response['total']}\n")
            print(tabulate([[row.get(h, '') for h in headers] for row in response['rows']],
                           headers=headers, tablefmt=format))

        elif view == 'fields':
            fields = response['fields']
            headers = ['name', 'engineType', 'type', 'label']
            print(tabulate([[f[h] for h in headers] for f in fields], headers=headers, tablefmt=format))

    @staticmethod
    def _print_cells(items: List[Dict[str, Any]], label_key: str, format: str):
        headers = ['']
        rows = []
        for item in items:
            row = [item[label_key]]
            for col_value, metrics in item['cells'].items():
                for alias, value in metrics.items():
                    header = f"{col_value} / {alias}"
                    if header not in headers:
                        headers.append(header)
                    row.append(value)
            rows.append(row)
        print(tabulate(rows, headers=headers, tablefmt=format))


def parse_time(value: Optional[str]) -> Optional[float]:
    """Epoch seconds from a number, an ISO timestamp, 'now' or a relative '-1h'"""
    if value is None:
        return None
    now = datetime.now(timezone.utc)
    if value == 'now':
        return now.timestamp()
    if value.startswith('-') and value[-1:] in ('m', 'h', 'd'):
        amount = int(value[1:-1])
        delta = {'m': timedelta(minutes=amount), 'h': timedelta(hours=amount),
                 'd': timedelta(days=amount)}[value[-1]]
        return (now - delta).timestamp()
    try:
        return float(value)
    except ValueError:
        parsed = datetime.fromisoformat(value)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()


def parse_metric(value: str) -> Dict[str, str]:
    """'bytes:sum' style metric argument"""
    name, _, agg = value.partition(':')
    return {'field': name, 'agg': agg or 'sum'}


def build_request(args) -> Dict[str, Any]:
    """Translate command line arguments into the view's request dictionary"""
    request: Dict[str, Any] = {'layer': args.layer}
    if args.from_time or args.to_time:
        request['time'] = {'fromEpoch': parse_time(args.from_time), 'toEpoch': parse_time(args.to_time)}
    if args.filter:
        request['filters'] = json.loads(args.filter)
    metric = parse_metric(args.metric)

    if args.view in ('chart', 'breakdown'):
        request['col'] = {'field': args.col, 'topN': args.top_n}
        request['row'] = {'field': args.row, 'topN': args.top_n}
        request['metric'] = metric
    elif args.view == 'heatmap':
        request.update(colField=args.col, rowField=args.row, metric=metric,
                       page={'offset': args.offset, 'limit': args.limit})
    elif args.view == 'drilldown':
        request.update(colField=args.col, rowField=args.row, metric=metric,
                       selectedColKey=args.col_key, rowKeys=args.row_keys or [],
                       timeBucket=args.time_bucket)
    elif args.view == 'distinct':
        request.update(field=args.col, search=args.search, cursor=args.cursor, limit=args.limit,
                       includeSelf=args.include_self)
    elif args.view == 'pivot':
        request.update(column={'field': args.col}, rows=[{'field': args.row}], values=[metric],
                       offset=args.offset, limit=args.limit)
        if args.row_items:
            request['rowField'] = args.row
    elif args.view == 'grid':
        request.update(columns=args.columns or None, offset=args.offset, limit=args.limit)
    return request


def main():
    """Main entry point for test interface"""
    parser = argparse.ArgumentParser(description='flowpivot Test Interface')

    # Use FLOWPIVOT_DATADIR environment variable as default, or None if not set
    default_datadir = os.environ.get('FLOWPIVOT_DATADIR')

    # Data source
    parser.add_argument('-d', '--datadir', type=str, default=default_datadir,
                       help='Data directory with layer CSV/Parquet files (default: $FLOWPIVOT_DATADIR)')
    parser.add_argument('--view', choices=VIEWS, default='chart',
                       help='View to run')
    parser.add_argument('--layer', type=str, default='HTTP_PAGE',
                       help='Layer code (HTTP_PAGE, HTTP_URI, TCP, ETHERNET)')

    # Filters
    parser.add_argument('--from', dest='from_time', type=str,
                       help='Start time (epoch seconds, ISO format or relative like -1h)')
    parser.add_argument('--to', dest='to_time', type=str,
                       help='End time (epoch seconds, ISO format or now)')
    parser.add_argument('-f', '--filter', type=str,
                       help='Filter model as JSON')

    # Axes and metric
    parser.add_argument('--col', type=str, help='Column (X) field, or the field for --view distinct')
    parser.add_argument('--row', type=str, help='Row (Y) field')
    parser.add_argument('--metric', type=str, default='bytes:sum',
                       help='Metric as field:agg (sum, avg, min, max, count, count_distinct)')
    parser.add_argument('--top-n', type=int, default=None,
                       help='Top N keys per axis')
    parser.add_argument('--col-key', type=str, help='Drilldown: selected column key')
    parser.add_argument('--row-keys', type=lambda s: [k for k in s.split(',') if k],
                       help='Drilldown: comma-separated row keys')
    parser.add_argument('--time-bucket', type=str, default=None,
                       help='Drilldown: RAW, S10, MI, HH, DAY or seconds')
    parser.add_argument('--columns', type=lambda s: [c.strip() for c in s.split(',') if c.strip()],
                       help='Grid: comma-separated columns')
    parser.add_argument('--row-items', action='store_true',
                       help='Pivot: list row items of --row instead of row groups')

    # Paging
    parser.add_argument('--offset', type=int, default=0)
    parser.add_argument('--limit', type=int, default=None)
    parser.add_argument('--search', type=str, help='Distinct: case-insensitive substring')
    parser.add_argument('--cursor', type=str, help='Distinct: cursor from the previous page')
    parser.add_argument('--include-self', action='store_true',
                       help="Distinct: keep the field's own filter")

    # Output
    parser.add_argument('--format', type=str, default='grid',
                       help='Table format (grid, simple, plain, html, etc.)')
    parser.add_argument('--json', action='store_true',
                       help='Print the response as JSON')

    # Performance
    parser.add_argument('--duckdb-threads', type=int, default=None,
                       help='Number of DuckDB threads (1 for deterministic results, default: auto)')

    # Logging
    parser.add_argument('--debug', action='store_true',
                       help='Enable debug logging')
    parser.add_argument('--debuglog', type=str,
                       help='Debug log file')

    args = parser.parse_args()

    # Check if datadir is provided (either via command line or environment variable)
    if not args.datadir:
        print("Error: Data directory not specified.", file=sys.stderr)
        print("Please either:", file=sys.stderr)
        print("  1. Set the FLOWPIVOT_DATADIR environment variable", file=sys.stderr)
        print("  2. Use the -d/--datadir command line option", file=sys.stderr)
        sys.exit(1)

    # Set up logging
    log_level = logging.DEBUG if args.debug else logging.INFO
    log_format = '%(asctime)s - %(levelname)s - %(message)s'

    if args.debuglog:
        logging.basicConfig(
            level=log_level,
            format=log_format,
            filename=args.debuglog,
            filemode='w'
        )
    else:
        logging.basicConfig(
            level=log_level,
            format=log_format
        )

    datadir = Path(args.datadir)
    if not datadir.exists():
        print(f"Error: Data directory not found: {datadir}", file=sys.stderr)
        sys.exit(1)

    settings = EngineSettings.from_env()
    tester = FlowPivotTester(datadir, duckdb_threads=args.duckdb_threads or settings.duckdb_threads,
                             settings=settings)
    try:
        request = build_request(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    results = tester.run_view(args.view, request)
    if args.json:
        print(json.dumps(results.get('response', results), indent=2, default=str))
    else:
        tester.print_results(results, format=args.format)

    if 'error' in results:
        sys.exit(1)


if __name__ == '__main__':
    main()
