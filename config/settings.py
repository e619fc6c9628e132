from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Solana RPC
    rpc_url: str = "https://api.mainnet-beta.solana.com"
    rpc_max_rps: float = 10.0
    rpc_commitment: str = "confirmed"

    # Jito block engine
    block_engine_url: str = "https://mainnet.block-engine.jito.wtf"
    tip_sol: float = 0.01  # Default tip when the caller does not pass one

    # Identities: base58 secret keys, NEVER LOG THESE
    payer_private_key: str = ""  # Fee payer + lookup table authority
    dev_private_key: str = ""  # Token creator ("dev") wallet
    keypairs_dir: str = "keypairs"  # Buyer wallets, one JSON file each

    # Session document (table address, mint, per-wallet allocations)
    session_file: str = "keyInfo.json"

    # Trading
    buy_slippage_bps: int = 1500  # max_sol_cost = sol_input * (1 + bps / 10_000)
    sell_min_sol_output: int = 0  # lamports

    # Bounded polling
    lut_poll_attempts: int = 20
    lut_poll_backoff_sec: float = 1.0
    bundle_poll_attempts: int = 30
    bundle_poll_backoff_sec: float = 2.0

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False
    log_dir: str = "logs"


settings = Settings()
