"""Minimal ABIs for the Euler contracts the allocator reads and writes."""


def _view(name: str, outputs: list[str], inputs: list[str] | None = None) -> dict:
    return {
        "type": "function",
        "name": name,
        "stateMutability": "view",
        "inputs": [{"name": f"arg{i}", "type": t} for i, t in enumerate(inputs or [])],
        "outputs": [{"name": f"out{i}", "type": t} for i, t in enumerate(outputs)],
    }


EULER_EARN_ABI = [
    _view("asset", ["address"]),
    _view("decimals", ["uint8"]),
    _view("supplyQueueLength", ["uint256"]),
    _view("supplyQueue", ["address"], ["uint256"]),
    _view("withdrawQueueLength", ["uint256"]),
    _view("withdrawQueue", ["address"], ["uint256"]),
    # (balance in shares, cap, enabled, removableAt)
    _view("config", ["uint112", "uint136", "bool", "uint64"], ["address"]),
    {
        "type": "function",
        "name": "reallocate",
        "stateMutability": "nonpayable",
        "inputs": [
            {
                "name": "allocations",
                "type": "tuple[]",
                "components": [
                    {"name": "id", "type": "address"},
                    {"name": "assets", "type": "uint256"},
                ],
            }
        ],
        "outputs": [],
    },
]

EVAULT_ABI = [
    _view("symbol", ["string"]),
    _view("cash", ["uint256"]),
    _view("totalBorrows", ["uint256"]),
    _view("totalSupply", ["uint256"]),
    _view("interestFee", ["uint16"]),
    # (supplyCap, borrowCap) in compact uint16 format
    _view("caps", ["uint16", "uint16"]),
    _view("interestRateModel", ["address"]),
    _view("balanceOf", ["uint256"], ["address"]),
]

KINK_IRM_ABI = [
    _view("baseRate", ["uint256"]),
    _view("slope1", ["uint256"]),
    _view("slope2", ["uint256"]),
    _view("kink", ["uint256"]),
]

ADAPTIVE_CURVE_IRM_ABI = [
    _view("TARGET_UTILIZATION", ["int256"]),
    _view("INITIAL_RATE_AT_TARGET", ["int256"]),
    _view("MIN_RATE_AT_TARGET", ["int256"]),
    _view("MAX_RATE_AT_TARGET", ["int256"]),
    _view("CURVE_STEEPNESS", ["int256"]),
    _view("ADJUSTMENT_SPEED", ["int256"]),
    _view("computeRateAtTargetView", ["uint256"], ["address", "uint256", "uint256"]),
]

EVC_ABI = [
    {
        "type": "function",
        "name": "batch",
        "stateMutability": "payable",
        "inputs": [
            {
                "name": "items",
                "type": "tuple[]",
                "components": [
                    {"name": "targetContract", "type": "address"},
                    {"name": "onBehalfOfAccount", "type": "address"},
                    {"name": "value", "type": "uint256"},
                    {"name": "data", "type": "bytes"},
                ],
            }
        ],
        "outputs": [],
    },
]
