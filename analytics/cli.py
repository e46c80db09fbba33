import argparse
from analytics.staking import stake_by_validator, totals_by_kind

def main(argv=None):
    p = argparse.ArgumentParser(description="Staking analytics (SQLite)")
    p.add_argument("--db", required=True, help="Path to SQLite DB")
    p.add_argument("--top", type=int, default=10, help="Top N validators")
    p.add_argument("--as-of", type=int, default=None, help="As-of block number")
    args = p.parse_args(argv)

    kinds = totals_by_kind(args.db, as_of_block=args.as_of)
    print("Operations by kind:")
    for r in kinds.itertuples(index=False):
        print(f"{r.kind:<17} {r.operations:>6}  {r.quantity:.4f}  ${r.usd_value:.2f}")

    validators = stake_by_validator(args.db, as_of_block=args.as_of).head(args.top)
    print(f"\nTop {args.top} validators by net stake:")
    for i, r in enumerate(validators.itertuples(index=False), 1):
        print(f"{i:02d}. {r.validator}  {r.net_stake:.4f}  nominators {r.nominators}")

if __name__ == "__main__":
    main()
