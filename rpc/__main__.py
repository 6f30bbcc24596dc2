"""Command line interface for testing RPC functionality"""
from . import (
    client, COIN_CREATED_TOPIC, NodeConnectionError, NodeAuthError, ChainError
)
from config import settings_conf

def test_rpc():
    """Exercise the provider calls the indexer depends on"""
    try:
        print("\nTesting chain calls:")
        print("-" * 50)
        
        print("1. Testing eth_blockNumber:")
        latest = client.get_block_number()
        print(f"  Success! Current block: {latest}")
        
        print("\n2. Testing eth_getBlockByNumber:")
        timestamp = client.get_block_timestamp(latest)
        print(f"  Success! Block timestamp: {timestamp}")
        
        print("\n3. Testing eth_getLogs on the factory (last 20 blocks):")
        logs = client.get_logs(
            settings_conf['factory_address'], [COIN_CREATED_TOPIC], latest - 19, latest
        )
        print(f"  Success! Found {len(logs)} CoinCreated logs")
        
        print("\n4. Testing eth_getCode on the factory:")
        code = client.get_code(settings_conf['factory_address'])
        print(f"  Success! Bytecode length: {len(code)}")
        
        print("\n5. Testing alchemy_getAssetTransfers (last 20 blocks):")
        creations = client.get_contract_creations(latest - 19, latest)
        print(f"  Success! Found {len(creations)} contract creations")
        
    except NodeAuthError as e:
        print("\nAuthentication failed:")
        print(f"  {str(e)}")
        print("\nPlease check alchemy_api_key in settings.conf or ALCHEMY_API_KEY")
        
    except NodeConnectionError as e:
        print("\nFailed to reach the RPC provider:")
        print(f"  {str(e)}")
        
    except ChainError as e:
        print(f"\nChain Error [{e.code}] in {e.method}:")
        print(f"  {str(e)}")

if __name__ == "__main__":
    test_rpc()
