"""site_compare.rpc: сокетный RPC между процессом роли и воркерами."""
