"""
Static 4-byte selector registry.
Built once at import; every table is read-only and shared by reference.
"""
from types import MappingProxyType
from typing import NamedTuple, Optional


class SelectorInfo(NamedTuple):
    protocol: str
    action: str
    function_signature: str


_RAW_SELECTORS = {
    # ERC20
    "0xa9059cbb": ("ERC20", "Transfer", "transfer(address,uint256)"),
    "0x23b872dd": ("ERC20", "TransferFrom", "transferFrom(address,address,uint256)"),
    "0x095ea7b3": ("ERC20", "Approve", "approve(address,uint256)"),
    "0x70a08231": ("ERC20", "BalanceOf", "balanceOf(address)"),

    # Uniswap V2 router
    "0x38ed1739": ("Uniswap V2", "Swap", "swapExactTokensForTokens(uint256,uint256,address[],address,uint256)"),
    "0x8803dbee": ("Uniswap V2", "Swap", "swapTokensForExactTokens(uint256,uint256,address[],address,uint256)"),
    "0x7ff36ab5": ("Uniswap V2", "Swap", "swapExactETHForTokens(uint256,address[],address,uint256)"),
    "0x18cbafe5": ("Uniswap V2", "Swap", "swapExactTokensForETH(uint256,uint256,address[],address,uint256)"),
    "0xfb3bdb41": ("Uniswap V2", "Swap", "swapETHForExactTokens(uint256,address[],address,uint256)"),
    "0x4a25d94a": ("Uniswap V2", "Swap", "swapTokensForExactETH(uint256,uint256,address[],address,uint256)"),
    "0xe8e33700": ("Uniswap V2", "AddLiquidity", "addLiquidity(address,address,uint256,uint256,uint256,uint256,address,uint256)"),
    "0xbaa2abde": ("Uniswap V2", "RemoveLiquidity", "removeLiquidity(address,address,uint256,uint256,uint256,address,uint256)"),

    # Uniswap V3 router
    "0x414bf389": ("Uniswap V3", "Swap", "exactInputSingle((address,address,uint24,address,uint256,uint256,uint256,uint160))"),
    "0xdb3e2198": ("Uniswap V3", "Swap", "exactOutputSingle((address,address,uint24,address,uint256,uint256,uint256,uint160))"),
    "0xc04b8d59": ("Uniswap V3", "Swap", "exactInput((bytes,address,uint256,uint256,uint256))"),
    "0xf28c0498": ("Uniswap V3", "Swap", "exactOutput((bytes,address,uint256,uint256,uint256))"),
    "0xac9650d8": ("Uniswap V3", "Multicall", "multicall(bytes[])"),
    "0x5ae401dc": ("Uniswap V3", "Multicall", "multicall(uint256,bytes[])"),

    # Uniswap Universal Router
    "0x3593564c": ("Uniswap Universal Router", "Execute", "execute(bytes,bytes[],uint256)"),

    # Curve
    "0x3df02124": ("Curve", "Swap", "exchange(int128,int128,uint256,uint256)"),
    "0xa6417ed6": ("Curve", "Swap", "exchange_underlying(int128,int128,uint256,uint256)"),
    "0x0b4c7e4d": ("Curve", "AddLiquidity", "add_liquidity(uint256[2],uint256)"),
    "0x4515cef3": ("Curve", "AddLiquidity", "add_liquidity(uint256[3],uint256)"),
    "0x5b41b908": ("Curve", "RemoveLiquidity", "remove_liquidity_one_coin(uint256,int128,uint256)"),

    # Aave V2
    "0xab9c4b5d": ("Aave V2", "Flashloan", "flashLoan(address,address[],uint256[],uint256[],address,bytes,uint16)"),
    "0xe8eda9df": ("Aave V2", "Deposit", "deposit(address,uint256,address,uint16)"),
    "0x69328dec": ("Aave V2", "Withdraw", "withdraw(address,uint256,address)"),
    "0xa415bcad": ("Aave V2", "Borrow", "borrow(address,uint256,uint256,uint16,address)"),
    "0x573ade81": ("Aave V2", "Repay", "repay(address,uint256,uint256,address)"),
    "0xdfd5281b": ("Aave V2", "Liquidation", "liquidationCall(address,address,address,uint256,bool)"),

    # Aave V3
    "0x617ba037": ("Aave V3", "Supply", "supply(address,uint256,address,uint16)"),
    "0x2dad97d4": ("Aave V3", "Flashloan", "flashLoanSimple(address,address,uint256,bytes,uint16)"),

    # Compound V2
    "0xa0712d68": ("Compound V2", "Mint", "mint(uint256)"),
    "0xdb006a75": ("Compound V2", "Redeem", "redeem(uint256)"),
    "0x852a12e3": ("Compound V2", "RedeemUnderlying", "redeemUnderlying(uint256)"),
    "0xf5e3c462": ("Compound V2", "Liquidate", "liquidateBorrow(address,uint256,address)"),

    # Balancer vault
    "0x52bbbe29": ("Balancer", "Swap", "swap((bytes32,uint8,address,address,uint256,bytes),(address,bool,address,bool),uint256,uint256)"),
    "0x945bcec9": ("Balancer", "BatchSwap", "batchSwap(uint8,(bytes32,uint256,uint256,uint256,bytes)[],address[],(address,bool,address,bool),int256[],uint256)"),
    "0xb95cac28": ("Balancer", "Flashloan", "flashLoan(address,address[],uint256[],bytes)"),

    # 1inch
    "0x7c025200": ("1inch", "Swap", "swap(address,(address,address,address,address,uint256,uint256,uint256,bytes),bytes)"),
    "0xe449022e": ("1inch", "Swap", "uniswapV3Swap(uint256,uint256,uint256[])"),
    "0x12aa3caf": ("1inch", "Swap", "swapExactInputSingle(uint256,(uint256,uint256,uint256,bytes32,address,address,address,bytes))"),

    # WETH
    "0xd0e30db0": ("WETH", "Deposit", "deposit()"),
    "0x2e1a7d4d": ("WETH", "Withdraw", "withdraw(uint256)"),

    # Multicall
    "0x252dba42": ("Multicall", "Multicall", "aggregate((address,bytes)[])"),
    "0x82ad56cb": ("Multicall", "Multicall", "tryAggregate(bool,(address,bytes)[])"),
}

SELECTOR_REGISTRY = MappingProxyType({
    selector: SelectorInfo(*info) for selector, info in _RAW_SELECTORS.items()
})


def _selectors_for(*actions: str) -> frozenset:
    return frozenset(sel for sel, info in SELECTOR_REGISTRY.items() if info.action in actions)


SWAP_SELECTORS = _selectors_for("Swap")
FLASHLOAN_SELECTORS = _selectors_for("Flashloan")
MULTICALL_SELECTORS = _selectors_for("Multicall")
APPROVE_SELECTORS = frozenset({"0x095ea7b3"})
LIQUIDATION_SELECTORS = frozenset({"0xdfd5281b"})

BRIDGE_ADDRESSES = frozenset({
    "0x3154cf16ccdb4c6d922629664174b904d80f2c35",  # Base bridge
    "0x99c9fc46f92e8a1c0dec1b1747d010903e884be1",  # Optimism gateway
    "0x4dbd4fc535ac27206064b68ffcf827b0a60bab3f",  # Arbitrum inbox
    "0xa0c68c638235ee32657e8f720a23cec1bfc77c77",  # Polygon root chain manager
    "0xd3a691c852cdb01e281545a27064741f0b7f6825",  # Stargate
})


def lookup_selector(selector: Optional[str]) -> Optional[SelectorInfo]:
    if not selector:
        return None
    return SELECTOR_REGISTRY.get(selector.lower())
