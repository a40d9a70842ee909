"""命令行接口。"""
