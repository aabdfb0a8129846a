from ssh_remote_file.config_manager import ConfigManager
from ssh_remote_file.logger import setup_logger
from ssh_remote_file.mcp_server import create_mcp_server, run_stdio_server


def main() -> int:
    """
    SSH Remote File MCP 服务器主入口

    通过 run_stdio_server 启动，启动失败时把异常写入临时目录下的错误日志
    """
    # 1. 加载配置
    config_manager = ConfigManager.load()

    # 2. 设置日志
    setup_logger(config_manager.settings)

    # 3. 创建 MCP 服务器
    server = create_mcp_server(settings=config_manager.settings)

    # 4. stdio 传输
    run_stdio_server(server)

    return 0


if __name__ == "__main__":
    import sys

    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n服务器已停止")
        sys.exit(0)
