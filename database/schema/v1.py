"""Schema v1 - Token discovery, reconciliation and enrichment tables.

Tables:
    tokens: canonical token record, one row per (chain, address)
    token_detections: append-only log of every discovery signal
    token_provenance: which sources saw a token, exactly one primary
    token_stats: current market stats, 1:1 with tokens
    token_history: stats time series used for the 24h baseline
    token_stage_history: audit of stage transitions
    bytecode_fingerprints: selector sets for known token standards
    creator_profiles: creator metadata from the coin provider
"""

UPDATED_AT_FUNCTION = '''
BEGIN
    NEW.updated_at = now();
    RETURN NEW;
END;
'''

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'tokens',
            'columns': [
                {'name': 'chain', 'type': 'TEXT', 'nullable': False},
                {'name': 'address', 'type': 'TEXT', 'nullable': False},
                {'name': 'name', 'type': 'TEXT'},
                {'name': 'symbol', 'type': 'TEXT'},
                {'name': 'decimals', 'type': 'INT4', 'nullable': False, 'default': '18'},
                {'name': 'total_supply', 'type': 'NUMERIC'},
                {'name': 'creator_address', 'type': 'TEXT'},
                {'name': 'factory_address', 'type': 'TEXT'},
                {'name': 'platform', 'type': 'TEXT'},
                {'name': 'logo_url', 'type': 'TEXT'},
                {'name': 'metadata_uri', 'type': 'TEXT'},
                {'name': 'launch_timestamp', 'type': 'TIMESTAMPTZ'},
                {'name': 'first_seen_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'creation_tx_hash', 'type': 'TEXT'},
                {'name': 'creation_block', 'type': 'INT8'},
                {'name': 'creation_log_index', 'type': 'INT4'},
                {'name': 'source', 'type': 'TEXT', 'nullable': False},
                {'name': 'token_stage', 'type': 'TEXT', 'nullable': False, 'default': "'created'"},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'primary_key': ['chain', 'address'],
            'indexes': [
                {'name': 'idx_tokens_stage', 'columns': ['token_stage']},
                {'name': 'idx_tokens_launch', 'columns': ['launch_timestamp']},
                {'name': 'idx_tokens_creator', 'columns': ['creator_address']}
            ]
        },
        {
            'name': 'token_detections',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'chain', 'type': 'TEXT', 'nullable': False},
                {'name': 'address', 'type': 'TEXT'},
                {'name': 'source', 'type': 'TEXT', 'nullable': False},
                {'name': 'tx_hash', 'type': 'TEXT'},
                {'name': 'block_number', 'type': 'INT8'},
                {'name': 'log_index', 'type': 'INT4'},
                {'name': 'factory_address', 'type': 'TEXT'},
                {'name': 'code_hash', 'type': 'TEXT'},
                {'name': 'matched_fingerprint', 'type': 'TEXT'},
                {'name': 'raw_data', 'type': 'JSONB'},
                {'name': 'processed', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'detected_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_detections_address', 'columns': ['chain', 'address']},
                {'name': 'idx_detections_unprocessed', 'columns': ['detected_at'], 'where': 'NOT processed'}
            ]
        },
        {
            'name': 'token_provenance',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'chain', 'type': 'TEXT', 'nullable': False},
                {'name': 'token_address', 'type': 'TEXT', 'nullable': False},
                {'name': 'source', 'type': 'TEXT', 'nullable': False},
                {'name': 'tx_hash', 'type': 'TEXT', 'nullable': False, 'default': "''"},
                {'name': 'block_number', 'type': 'INT8'},
                {'name': 'is_primary', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'discovered_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['chain', 'token_address'], 'references': 'tokens(chain, address)'}
            ],
            'indexes': [
                {
                    'name': 'idx_provenance_source',
                    'columns': ['chain', 'token_address', 'source', 'tx_hash'],
                    'unique': True
                },
                {
                    'name': 'idx_provenance_primary',
                    'columns': ['chain', 'token_address'],
                    'unique': True,
                    'where': 'is_primary'
                }
            ]
        },
        {
            'name': 'token_stats',
            'columns': [
                {'name': 'chain', 'type': 'TEXT', 'nullable': False},
                {'name': 'token_address', 'type': 'TEXT', 'nullable': False},
                {'name': 'price', 'type': 'NUMERIC', 'nullable': False, 'default': '0'},
                {'name': 'price_change_24h', 'type': 'NUMERIC', 'nullable': False, 'default': '0'},
                {'name': 'volume_24h', 'type': 'NUMERIC', 'nullable': False, 'default': '0'},
                {'name': 'market_cap', 'type': 'NUMERIC', 'nullable': False, 'default': '0'},
                {'name': 'liquidity', 'type': 'NUMERIC', 'nullable': False, 'default': '0'},
                {'name': 'liquidity_dex', 'type': 'NUMERIC', 'nullable': False, 'default': '0'},
                {'name': 'liquidity_estimated', 'type': 'NUMERIC', 'nullable': False, 'default': '0'},
                {'name': 'liquidity_source', 'type': 'TEXT'},
                {'name': 'holders', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'data_source', 'type': 'TEXT'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'primary_key': ['chain', 'token_address'],
            'foreign_keys': [
                {'columns': ['chain', 'token_address'], 'references': 'tokens(chain, address)'}
            ],
            'indexes': [
                {'name': 'idx_stats_price_change', 'columns': ['price_change_24h']},
                {'name': 'idx_stats_volume', 'columns': ['volume_24h']},
                {'name': 'idx_stats_updated', 'columns': ['updated_at']}
            ]
        },
        {
            'name': 'token_history',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'chain', 'type': 'TEXT', 'nullable': False},
                {'name': 'token_address', 'type': 'TEXT', 'nullable': False},
                {'name': 'timestamp', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'price', 'type': 'NUMERIC', 'nullable': False, 'default': '0'},
                {'name': 'volume', 'type': 'NUMERIC', 'nullable': False, 'default': '0'},
                {'name': 'market_cap', 'type': 'NUMERIC', 'nullable': False, 'default': '0'},
                {'name': 'liquidity', 'type': 'NUMERIC', 'nullable': False, 'default': '0'},
                {'name': 'holders', 'type': 'INT8', 'nullable': False, 'default': '0'}
            ],
            'foreign_keys': [
                {'columns': ['chain', 'token_address'], 'references': 'tokens(chain, address)'}
            ],
            'indexes': [
                {'name': 'idx_history_token_time', 'columns': ['chain', 'token_address', 'timestamp']}
            ]
        },
        {
            'name': 'token_stage_history',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'chain', 'type': 'TEXT', 'nullable': False},
                {'name': 'token_address', 'type': 'TEXT', 'nullable': False},
                {'name': 'from_stage', 'type': 'TEXT'},
                {'name': 'to_stage', 'type': 'TEXT', 'nullable': False},
                {'name': 'trigger_source', 'type': 'TEXT', 'nullable': False},
                {'name': 'reason', 'type': 'TEXT'},
                {'name': 'stats_snapshot', 'type': 'JSONB'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['chain', 'token_address'], 'references': 'tokens(chain, address)'}
            ],
            'indexes': [
                {'name': 'idx_stage_history_token', 'columns': ['chain', 'token_address']}
            ]
        },
        {
            'name': 'bytecode_fingerprints',
            'columns': [
                {'name': 'id', 'type': 'TEXT', 'primary_key': True},
                {'name': 'name', 'type': 'TEXT'},
                {'name': 'selectors', 'type': 'TEXT[]', 'nullable': False},
                {'name': 'confidence', 'type': 'INT4', 'nullable': False, 'default': '50'},
                {'name': 'is_active', 'type': 'BOOLEAN', 'nullable': False, 'default': 'true'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ]
        },
        {
            'name': 'creator_profiles',
            'columns': [
                {'name': 'address', 'type': 'TEXT', 'primary_key': True},
                {'name': 'display_name', 'type': 'TEXT'},
                {'name': 'avatar_url', 'type': 'TEXT'},
                {'name': 'farcaster_handle', 'type': 'TEXT'},
                {'name': 'farcaster_fid', 'type': 'INT8'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ]
        }
    ],
    'triggers': [
        {
            'name': 'trg_tokens_updated_at',
            'table': 'tokens',
            'timing': 'BEFORE',
            'event': 'UPDATE',
            'function_name': 'set_tokens_updated_at',
            'function_body': UPDATED_AT_FUNCTION
        },
        {
            'name': 'trg_creator_profiles_updated_at',
            'table': 'creator_profiles',
            'timing': 'BEFORE',
            'event': 'UPDATE',
            'function_name': 'set_creator_profiles_updated_at',
            'function_body': UPDATED_AT_FUNCTION
        }
    ],
    'seed': [
        # ERC-20 core: name, symbol, decimals, totalSupply, balanceOf, transfer
        '''
        INSERT INTO bytecode_fingerprints (id, name, selectors, confidence)
        VALUES ('erc20', 'ERC-20',
                ARRAY['06fdde03', '95d89b41', '313ce567', '18160ddd', '70a08231', 'a9059cbb'],
                90)
        ON CONFLICT (id) DO NOTHING
        ''',
        # ERC-20 with metadata URI: core plus approve, transferFrom, allowance, contractURI
        '''
        INSERT INTO bytecode_fingerprints (id, name, selectors, confidence)
        VALUES ('erc20_metadata', 'ERC-20 with contractURI',
                ARRAY['06fdde03', '95d89b41', '70a08231', 'a9059cbb', '095ea7b3', '23b872dd', 'dd62ed3e', 'e8a3d485'],
                95)
        ON CONFLICT (id) DO NOTHING
        '''
    ]
}
