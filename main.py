"""
Main entry point for the airline operations core
Schema management, the consistency health check and sample-data seeding
"""
import argparse
import json
import sys

from database.config import get_settings
from database.database import get_db_manager, init_db
from database.logging_config import configure_logging

# Exit codes of the health command, keyed by verdict
HEALTH_EXIT_CODES = {
    'HEALTHY': 0,
    'ISSUES_FOUND': 1,
    'ERROR': 2,
}


def cmd_init_db(args):
    """Create all tables"""
    init_db()
    print("Database tables created")
    return 0


def cmd_drop_db(args):
    """Drop all tables"""
    get_db_manager().drop_tables()
    print("Database tables dropped")
    return 0


def cmd_health(args):
    """Print the consistency report as JSON and exit with its verdict"""
    from backend.consistency_validator import ConsistencyValidator

    report = ConsistencyValidator().run_full_validation()
    print(json.dumps({
        'message': 'Database consistency check completed',
        **report.to_dict(),
    }, indent=2, default=str))
    return HEALTH_EXIT_CODES[report.status.value]


def cmd_seed(args):
    """Generate sample data through the service layer"""
    from data.data_generator import DataGenerator

    get_db_manager().create_tables()
    generator = DataGenerator(seed=args.seed)
    generator.generate_sample_dataset(passengers=args.passengers, tickets=args.tickets)
    return 0


def build_parser():
    parser = argparse.ArgumentParser(description='Airline operations core')
    subparsers = parser.add_subparsers(dest='command', required=True)

    init_parser = subparsers.add_parser('init-db', help='Create database tables')
    init_parser.set_defaults(func=cmd_init_db)

    drop_parser = subparsers.add_parser('drop-db', help='Drop database tables')
    drop_parser.set_defaults(func=cmd_drop_db)

    health_parser = subparsers.add_parser(
        'health', help='Run the consistency audit (exit 0 healthy, 1 issues, 2 error)'
    )
    health_parser.set_defaults(func=cmd_health)

    seed_parser = subparsers.add_parser('seed', help='Generate sample data')
    seed_parser.add_argument('--seed', type=int, help='Random seed for reproducibility')
    seed_parser.add_argument('--passengers', type=int, default=50,
                             help='Number of registered passengers')
    seed_parser.add_argument('--tickets', type=int, default=200,
                             help='Number of tickets to book')
    seed_parser.set_defaults(func=cmd_seed)

    return parser


def main(argv=None):
    """Main entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(get_settings().log_level)

    try:
        return args.func(args)
    except RuntimeError as e:
        # Pool creation failed; the store is unreachable
        print(f"Error: {e}", file=sys.stderr)
        if args.command == 'health':
            return HEALTH_EXIT_CODES['ERROR']
        return 1


if __name__ == "__main__":
    sys.exit(main())
