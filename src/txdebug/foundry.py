"""
Wrapper around Foundry's `cast` for read-only calls and transaction replays.
"""
import asyncio
import logging
import shutil
import subprocess
from typing import List, Optional

from txdebug.config import get_rpc_url

logger = logging.getLogger(__name__)

CAST_MISSING = "cast CLI not available. Install Foundry: https://getfoundry.sh"
RUN_OUTPUT_LIMIT = 8000
ERROR_OUTPUT_LIMIT = 2000
CALL_ERROR_LIMIT = 1000


class FoundryClient:
    def __init__(self, cast_path: Optional[str] = None):
        self.cast_path = cast_path or shutil.which("cast")

    @property
    def available(self) -> bool:
        return bool(self.cast_path)

    async def _exec(self, args: List[str]) -> subprocess.CompletedProcess:
        logger.info(f"cast {' '.join(args[:2])}")
        return await asyncio.to_thread(
            subprocess.run,
            [self.cast_path, *args],
            capture_output=True,
            text=True,
        )

    async def cast_run(self, tx_hash: str, network_id: int) -> str:
        """Replay a transaction for an opcode-level execution trace."""
        if not self.available:
            return CAST_MISSING
        try:
            rpc_url = get_rpc_url(str(network_id))
            proc = await self._exec(["run", tx_hash, "--rpc-url", rpc_url])
        except (OSError, ValueError) as e:
            return f"cast run failed: {e}"[:ERROR_OUTPUT_LIMIT]

        if proc.returncode != 0:
            return f"cast run failed: {proc.stderr.strip() or proc.stdout.strip()}"[:ERROR_OUTPUT_LIMIT]

        output = proc.stdout
        if len(output) > RUN_OUTPUT_LIMIT:
            return output[:RUN_OUTPUT_LIMIT] + "\n... (truncated)"
        return output

    async def cast_call(
        self,
        address: str,
        function_signature: str,
        args: List[str],
        network_id: int,
        block_number: int,
    ) -> str:
        """
        Static call against historical state, e.g.
        cast_call(token, "allowance(address,address)", [owner, spender], 1, 19481234)
        """
        if not self.available:
            return CAST_MISSING
        try:
            rpc_url = get_rpc_url(str(network_id))
            proc = await self._exec([
                "call", address, function_signature, *[str(a) for a in args],
                "--rpc-url", rpc_url, "--block", str(block_number),
            ])
        except (OSError, ValueError) as e:
            return f"cast call failed: {e}"[:CALL_ERROR_LIMIT]

        if proc.returncode != 0:
            return f"cast call failed: {proc.stderr.strip() or proc.stdout.strip()}"[:CALL_ERROR_LIMIT]
        return proc.stdout.strip() or "(empty response)"
