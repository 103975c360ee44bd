#!/usr/bin/env python
"""
Print the cost breakdown for one job against a factory.

Usage:
    python scripts/quote_job.py data/factories/nordfisk --product Salmon \\
        --trim-type A --rm-spec 1-2kg --quantity 100 --box-qty 10 --packaging Box
    python scripts/quote_job.py nordfisk.xlsx --product-type Frozen ... \\
        --freezing-type "Tunnel Freezing" --storage-weeks 2
"""
import argparse
import sys
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from seafood_pricing.config.logging_config import setup_logging
from seafood_pricing.data.factory_loader import load_factory_dir, load_factory_workbook
from seafood_pricing.engine.charge_composer import money
from seafood_pricing.engine.job_line import JobLine
from seafood_pricing.engine.models import JobSpecification
from seafood_pricing.errors import FactoryDataError, ToggleRejected


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Quote one processing job")
    parser.add_argument('factory', type=Path, help="factory workbook (.xlsx) or CSV directory")
    parser.add_argument('--product-type', default='Fresh')
    parser.add_argument('--product', required=True)
    parser.add_argument('--trim-type', default='')
    parser.add_argument('--rm-spec', default='')
    parser.add_argument('--quantity', type=float, default=1.0)
    parser.add_argument('--yield', dest='yield_value', type=float, default=0.0)
    parser.add_argument('--box-qty', default='')
    parser.add_argument('--packaging', default='')
    parser.add_argument('--filing-rate', type=float, default=0.0)
    parser.add_argument('--freezing-type', default='')
    parser.add_argument('--storage-weeks', type=float, default=None,
                        help="require storage for this many weeks (Frozen only)")
    parser.add_argument('--toggle', action='append', default=[], metavar='NAME=on|off',
                        help="e.g. prodAB=on, palletCharge=off")
    parser.add_argument('--trace', action='store_true', help="print the resolution trace")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    setup_logging(level='WARNING', json_output=False)

    try:
        if args.factory.is_dir():
            factory = load_factory_dir(args.factory)
        else:
            factory = load_factory_workbook(args.factory)
    except FactoryDataError as e:
        print(f"❌ {e}")
        sys.exit(1)

    job = JobSpecification(
        product_type=args.product_type,
        product=args.product,
        trim_type=args.trim_type,
        rm_spec=args.rm_spec,
        quantity=args.quantity,
        box_qty=args.box_qty,
        packaging_type=args.packaging,
        filing_rate=args.filing_rate,
    )
    line = JobLine(factory, job)

    try:
        line.update_job(yield_value=args.yield_value, freezing_type=args.freezing_type)
        if args.storage_weeks is not None:
            line.update_job(is_storage_required=True, number_of_weeks=args.storage_weeks)
        for item in args.toggle:
            name, _, state = item.partition('=')
            line.toggle(name.strip(), state.strip().lower() in ('on', 'true', '1', 'yes'))
    except (ToggleRejected, ValueError, KeyError) as e:
        print(f"❌ {e}")
        sys.exit(1)

    b = line.breakdown
    cur = factory.currency

    print("=" * 60)
    print(f"{factory.name} - {job.product_type} {job.product} {job.trim_type} {job.rm_spec}")
    print("=" * 60)
    print(f"Filleting:          {money(b.filleting_amount, cur)}")
    print(f"Packaging:          {money(b.packaging_amount, cur)}")
    print(f"Additional charges: {money(b.additional_charges, cur)}")
    print(f"Freezing:           {money(b.freezing_charge, cur)}")
    for charge in line.optional_charges:
        print(f"  {charge.name}: {money(charge.value, cur)}")
    print(f"Optional charges:   {money(b.optional_total, cur)}")
    if b.storage_label:
        print(f"Storage:            {money(b.storage_charge, cur)} ({b.storage_label})")
    print(f"Frozen flat fees:   {money(b.frozen_flat_fees, cur)}")
    print(f"Subtotal:           {money(b.subtotal, cur)}")
    print(f"Percentage fees:    {money(b.percentage_fees, cur)}")
    print("-" * 60)
    print(f"Total:              {money(b.total, cur)}  ({money(b.cost_per_kg, cur)}/kg)")

    for warning in b.warnings:
        print(f"⚠️  {warning}")

    if args.trace:
        print()
        print(b.get_trace_text())


if __name__ == "__main__":
    main()
