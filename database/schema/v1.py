"""Schema v1 - Initial marketplace schema.

This version includes tables for:
- Community memberships (read by the membership provider)
- Listings and favorites
- Buyer/seller conversations and messages
- Escrow transactions and disputes
- Reviews and materialized seller statistics
"""

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'community_members',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'community_id', 'type': 'UUID', 'nullable': False},
                {'name': 'user_id', 'type': 'UUID', 'nullable': False},
                {'name': 'role', 'type': 'TEXT', 'nullable': False, 'default': "'member'"},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'active'"},
                {'name': 'display_name', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_members_community_user', 'columns': ['community_id', 'user_id'], 'unique': True}
            ],
            'checks': [
                {'name': 'valid_member_role', 'expression': "role IN ('admin', 'moderator', 'member')"}
            ]
        },
        {
            'name': 'marketplace_listings',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'community_id', 'type': 'UUID', 'nullable': False},
                {'name': 'seller_id', 'type': 'UUID', 'nullable': False},
                {'name': 'title', 'type': 'TEXT', 'nullable': False},
                {'name': 'description', 'type': 'TEXT'},
                {'name': 'category', 'type': 'TEXT', 'nullable': False, 'default': "'other'"},
                {'name': 'condition', 'type': 'TEXT', 'nullable': False, 'default': "'good'"},
                {'name': 'price', 'type': 'DECIMAL(12,2)', 'nullable': False},
                {'name': 'original_price', 'type': 'DECIMAL(12,2)'},
                {'name': 'quantity', 'type': 'INT8', 'nullable': False, 'default': '1'},
                {'name': 'images', 'type': 'TEXT[]', 'nullable': False, 'default': "'{}'"},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'draft'"},
                {'name': 'shipping_available', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'shipping_cost', 'type': 'DECIMAL(12,2)', 'nullable': False, 'default': '0'},
                {'name': 'pickup_available', 'type': 'BOOLEAN', 'nullable': False, 'default': 'true'},
                {'name': 'pickup_location', 'type': 'TEXT'},
                {'name': 'views_count', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'favorites_count', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'is_featured', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_listings_community', 'columns': ['community_id']},
                {'name': 'idx_listings_seller', 'columns': ['seller_id']},
                {'name': 'idx_listings_status', 'columns': ['status']}
            ],
            'checks': [
                {'name': 'valid_listing_status', 'expression': "status IN ('draft', 'active', 'sold', 'reserved', 'expired', 'deleted')"},
                {'name': 'valid_listing_condition', 'expression': "condition IN ('new', 'like_new', 'good', 'fair', 'poor')"},
                {'name': 'listing_price_positive', 'expression': 'price >= 0 AND shipping_cost >= 0'},
                {'name': 'listing_quantity_positive', 'expression': 'quantity >= 1'},
                {'name': 'active_listing_delivery', 'expression': "status <> 'active' OR shipping_available OR pickup_available"}
            ]
        },
        {
            'name': 'marketplace_favorites',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'community_id', 'type': 'UUID', 'nullable': False},
                {'name': 'member_id', 'type': 'UUID', 'nullable': False},
                {'name': 'listing_id', 'type': 'UUID', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['listing_id'], 'references': 'marketplace_listings(id)'}
            ],
            'indexes': [
                {'name': 'idx_favorites_member_listing', 'columns': ['member_id', 'listing_id'], 'unique': True}
            ]
        },
        {
            'name': 'marketplace_conversations',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'community_id', 'type': 'UUID', 'nullable': False},
                {'name': 'listing_id', 'type': 'UUID', 'nullable': False},
                {'name': 'buyer_id', 'type': 'UUID', 'nullable': False},
                {'name': 'seller_id', 'type': 'UUID', 'nullable': False},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'active'"},
                {'name': 'last_message_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'buyer_unread_count', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'seller_unread_count', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['listing_id'], 'references': 'marketplace_listings(id)'}
            ],
            'indexes': [
                {'name': 'idx_conversations_listing_buyer', 'columns': ['listing_id', 'buyer_id'], 'unique': True},
                {'name': 'idx_conversations_seller', 'columns': ['seller_id']}
            ],
            'checks': [
                {'name': 'valid_conversation_status', 'expression': "status IN ('active', 'archived', 'blocked')"}
            ]
        },
        {
            'name': 'marketplace_messages',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'conversation_id', 'type': 'UUID', 'nullable': False},
                {'name': 'sender_id', 'type': 'UUID', 'nullable': False},
                {'name': 'content', 'type': 'TEXT', 'nullable': False},
                {'name': 'message_type', 'type': 'TEXT', 'nullable': False, 'default': "'text'"},
                {'name': 'offer_amount', 'type': 'DECIMAL(12,2)'},
                {'name': 'is_read', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'read_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['conversation_id'], 'references': 'marketplace_conversations(id)'}
            ],
            'indexes': [
                {'name': 'idx_messages_conversation', 'columns': ['conversation_id', 'created_at']}
            ],
            'checks': [
                {'name': 'valid_message_type', 'expression': "message_type IN ('text', 'offer', 'system')"},
                {'name': 'offer_has_amount', 'expression': "message_type <> 'offer' OR offer_amount > 0"}
            ]
        },
        {
            'name': 'marketplace_transactions',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'community_id', 'type': 'UUID', 'nullable': False},
                {'name': 'listing_id', 'type': 'UUID', 'nullable': False},
                {'name': 'buyer_id', 'type': 'UUID', 'nullable': False},
                {'name': 'seller_id', 'type': 'UUID', 'nullable': False},
                {'name': 'quantity', 'type': 'INT8', 'nullable': False, 'default': '1'},
                {'name': 'unit_price', 'type': 'DECIMAL(12,2)', 'nullable': False},
                {'name': 'shipping_cost', 'type': 'DECIMAL(12,2)', 'nullable': False, 'default': '0'},
                {'name': 'fee_amount', 'type': 'DECIMAL(12,2)', 'nullable': False},
                {'name': 'total_price', 'type': 'DECIMAL(12,2)', 'nullable': False},
                {'name': 'net_amount', 'type': 'DECIMAL(12,2)', 'nullable': False},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'pending'"},
                {'name': 'escrow_status', 'type': 'TEXT', 'nullable': False, 'default': "'none'"},
                {'name': 'payment_reference', 'type': 'TEXT'},
                {'name': 'escrow_held_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'buyer_confirmed_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'escrow_released_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'shipped_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'tracking_number', 'type': 'TEXT'},
                {'name': 'shipping_carrier', 'type': 'TEXT'},
                {'name': 'refund_reason', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['listing_id'], 'references': 'marketplace_listings(id)'}
            ],
            'indexes': [
                {'name': 'idx_transactions_listing', 'columns': ['listing_id']},
                {'name': 'idx_transactions_buyer', 'columns': ['buyer_id']},
                {'name': 'idx_transactions_seller', 'columns': ['seller_id']},
                {'name': 'idx_transactions_status', 'columns': ['status']}
            ],
            'checks': [
                {'name': 'valid_transaction_status', 'expression': "status IN ('pending', 'paid', 'completed', 'refunded', 'disputed', 'cancelled')"},
                {'name': 'valid_escrow_status', 'expression': "escrow_status IN ('none', 'pending', 'held', 'released', 'refunded', 'disputed')"},
                {'name': 'completed_is_released', 'expression': "status <> 'completed' OR escrow_status = 'released'"},
                {'name': 'disputed_is_disputed', 'expression': "status <> 'disputed' OR escrow_status = 'disputed'"}
            ]
        },
        {
            'name': 'marketplace_disputes',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'community_id', 'type': 'UUID', 'nullable': False},
                {'name': 'transaction_id', 'type': 'UUID', 'nullable': False},
                {'name': 'initiated_by', 'type': 'UUID', 'nullable': False},
                {'name': 'reason', 'type': 'TEXT', 'nullable': False},
                {'name': 'description', 'type': 'TEXT', 'nullable': False},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'open'"},
                {'name': 'resolved', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'resolution_notes', 'type': 'TEXT'},
                {'name': 'resolved_by', 'type': 'UUID'},
                {'name': 'resolved_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['transaction_id'], 'references': 'marketplace_transactions(id)'}
            ],
            'indexes': [
                {'name': 'idx_disputes_transaction', 'columns': ['transaction_id'], 'unique': True},
                {'name': 'idx_disputes_status', 'columns': ['status']}
            ],
            'checks': [
                {'name': 'valid_dispute_status', 'expression': "status IN ('open', 'resolved_buyer_favor', 'resolved_seller_favor')"},
                {'name': 'dispute_description_present', 'expression': "length(trim(description)) > 0"}
            ]
        },
        {
            'name': 'marketplace_reviews',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'community_id', 'type': 'UUID', 'nullable': False},
                {'name': 'transaction_id', 'type': 'UUID', 'nullable': False},
                {'name': 'reviewer_id', 'type': 'UUID', 'nullable': False},
                {'name': 'reviewee_id', 'type': 'UUID', 'nullable': False},
                {'name': 'listing_id', 'type': 'UUID'},
                {'name': 'rating', 'type': 'INT8', 'nullable': False},
                {'name': 'title', 'type': 'TEXT'},
                {'name': 'content', 'type': 'TEXT'},
                {'name': 'is_buyer_review', 'type': 'BOOLEAN', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['transaction_id'], 'references': 'marketplace_transactions(id)'}
            ],
            'indexes': [
                {'name': 'idx_reviews_transaction_reviewer', 'columns': ['transaction_id', 'reviewer_id'], 'unique': True},
                {'name': 'idx_reviews_reviewee', 'columns': ['reviewee_id']}
            ],
            'checks': [
                {'name': 'valid_rating', 'expression': 'rating BETWEEN 1 AND 5'}
            ]
        },
        {
            'name': 'marketplace_seller_stats',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'community_id', 'type': 'UUID', 'nullable': False},
                {'name': 'member_id', 'type': 'UUID', 'nullable': False},
                {'name': 'total_sales', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'total_revenue', 'type': 'DECIMAL(12,2)', 'nullable': False, 'default': '0'},
                {'name': 'average_rating', 'type': 'DECIMAL(3,2)'},
                {'name': 'total_reviews', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'successful_transactions', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'cancelled_transactions', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'response_rate', 'type': 'DECIMAL(5,2)'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_seller_stats_member', 'columns': ['community_id', 'member_id'], 'unique': True}
            ]
        }
    ],
    'migrations': []
}
