"""local-agents 命令行入口（`local-agents serve|list-agents|invoke|run`）。"""
