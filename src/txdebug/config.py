import os
from typing import Dict


class ModelConfig:
    """Model configuration from environment with defaults."""

    ORCHESTRATOR_MODEL = os.getenv("LLM_MODEL", "openai/gpt-4o")
    BASE_URL = os.getenv("OPENAI_BASE_URL", "https://openrouter.ai/api/v1")
    API_KEY = os.getenv("OPEN_ROUTER_API_KEY") or os.getenv("OPENAI_API_KEY")
    ORCHESTRATOR_TEMPERATURE = 0.3
    ORCHESTRATOR_MAX_TOKENS = 1500
    QA_TEMPERATURE = 0.2
    QA_MAX_TOKENS = 500


class ServiceConfig:
    """Upstream service credentials and server settings."""

    TENDERLY_ACCESS_KEY = os.getenv("TENDERLY_ACCESS_KEY", "")
    TENDERLY_ACCOUNT_SLUG = os.getenv("TENDERLY_ACCOUNT_SLUG", "")
    TENDERLY_PROJECT_SLUG = os.getenv("TENDERLY_PROJECT_SLUG", "")
    ETHERSCAN_API_KEY = os.getenv("ETHERSCAN_API_KEY", "")
    ALCHEMY_API_KEY = os.getenv("ALCHEMY_API_KEY", "")
    LOGS_DIR = os.getenv("TXDEBUG_LOGS_DIR", "logs")
    PORT = int(os.getenv("PORT", "3001"))


# network id -> (alchemy subdomain, public fallback)
RPC_ENDPOINTS: Dict[str, tuple] = {
    "1": ("eth-mainnet", "https://eth.llamarpc.com"),
    "137": ("polygon-mainnet", "https://polygon-rpc.com"),
    "42161": ("arb-mainnet", "https://arb1.arbitrum.io/rpc"),
    "10": ("opt-mainnet", "https://mainnet.optimism.io"),
    "8453": ("base-mainnet", "https://mainnet.base.org"),
    "59144": ("linea-mainnet", "https://rpc.linea.build"),
    "43114": ("avax-mainnet", "https://api.avax.network/ext/bc/C/rpc"),
    "324": ("zksync-mainnet", "https://mainnet.era.zksync.io"),
    "81457": ("blast-mainnet", "https://rpc.blast.io"),
    "534352": ("scroll-mainnet", "https://rpc.scroll.io"),
    "56": (None, "https://bsc-dataseed.binance.org"),
    "250": (None, "https://rpc.ftm.tools"),
    "100": (None, "https://rpc.gnosischain.com"),
    "80094": (None, "https://rpc.berachain.com"),
}

NETWORK_NAMES: Dict[int, str] = {
    1: "Ethereum Mainnet",
    56: "BNB Smart Chain",
    100: "Gnosis",
    137: "Polygon",
    250: "Fantom",
    324: "zkSync Era",
    8453: "Base",
    10: "Optimism",
    42161: "Arbitrum One",
    43114: "Avalanche C-Chain",
    59144: "Linea",
    80094: "Berachain",
    81457: "Blast",
    534352: "Scroll",
}


def get_rpc_url(network_id: str) -> str:
    """
    Resolve a JSON-RPC endpoint for a network.
    Order: RPC_URL_<id> override, Alchemy (when ALCHEMY_API_KEY is set), public endpoint.
    """
    network_id = str(network_id)
    override = os.getenv(f"RPC_URL_{network_id}")
    if override:
        return override

    if network_id not in RPC_ENDPOINTS:
        raise ValueError(f"No RPC URL configured for network {network_id}")

    subdomain, public_url = RPC_ENDPOINTS[network_id]
    alchemy_key = os.getenv("ALCHEMY_API_KEY") or ServiceConfig.ALCHEMY_API_KEY
    if subdomain and alchemy_key:
        return f"https://{subdomain}.g.alchemy.com/v2/{alchemy_key}"
    return public_url
