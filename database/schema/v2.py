"""Schema v2 - Dispute statements, sold counts and dispute rate.

This version adds:
- sold_count on listings, bumped when a purchase completes
- buyer_statement / seller_statement on disputes
- dispute_rate on the materialized seller statistics
"""
import copy

from .v1 import schema as v1_schema

ADDED_COLUMNS = {
    'marketplace_listings': [
        {'name': 'sold_count', 'type': 'INT8', 'nullable': False, 'default': '0'}
    ],
    'marketplace_disputes': [
        {'name': 'buyer_statement', 'type': 'TEXT'},
        {'name': 'seller_statement', 'type': 'TEXT'}
    ],
    'marketplace_seller_stats': [
        {'name': 'dispute_rate', 'type': 'DECIMAL(5,2)'}
    ]
}

def _build_tables():
    tables = copy.deepcopy(v1_schema['tables'])
    for table in tables:
        added = ADDED_COLUMNS.get(table['name'], [])
        # Keep the timestamp columns last
        tail = [c for c in table['columns'] if c['name'] in ('created_at', 'updated_at')]
        head = [c for c in table['columns'] if c['name'] not in ('created_at', 'updated_at')]
        table['columns'] = head + copy.deepcopy(added) + tail
    return tables

schema = {
    'version': 2,
    'tables': _build_tables(),
    'migrations': [
        '''
        ALTER TABLE marketplace_listings
        ADD COLUMN sold_count INT8 NOT NULL DEFAULT 0;
        ''',
        '''
        ALTER TABLE marketplace_disputes
        ADD COLUMN buyer_statement TEXT;
        ''',
        '''
        ALTER TABLE marketplace_disputes
        ADD COLUMN seller_statement TEXT;
        ''',
        '''
        ALTER TABLE marketplace_seller_stats
        ADD COLUMN dispute_rate DECIMAL(5,2);
        '''
    ]
}
