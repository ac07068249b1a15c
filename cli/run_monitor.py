import argparse
import logging
import time

from controllers.monitor_controller import MonitorController
from models.data_models import CaptureBounds
from services.ai_client import AIClient
from services.bridge_client import BridgeClient
from services.config_manager import ConfigManager
from services.dispatch_queue import ConversationDispatchQueue
from services.input_simulator import InputSimulator
from services.logging_manager import LoggingManager
from services.reply_coordinates import ReplyCoordinateSynthesizer
from services.reply_delivery import ReplyDelivery
from ui.status_board import StatusBoard


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="WeChatAutoReply monitor")
    parser.add_argument("--config", help="path to config.yaml / config.json")
    parser.add_argument("--bridge-url", help="override bridge base url, e.g. http://127.0.0.1:18888")
    parser.add_argument("--ai-url", help="override AI backend base url")
    parser.add_argument("--delivery", choices=["input", "bridge"], help="how replies are delivered")
    parser.add_argument("--chat-area", help="chat area 'x,y,w,h' used for fallback click targets")
    parser.add_argument("--duration", type=float, help="stop after this many seconds (default: until Ctrl+C)")
    parser.add_argument("--log-level", help="override log level (DEBUG/INFO/WARNING/ERROR)")
    return parser


def main(argv=None) -> int:
    """
    监控模式 CLI 入口。

    函数级注释：
    - 加载配置并应用命令行覆盖（bridge/AI 地址、投递方式、聊天区域）；
    - 组装 bridge、AI、投递、派发队列与监控循环；
    - 运行至 Ctrl+C 或 --duration 到期，随后停止轮询并等待派发队列处理完已入队消息。
    """
    args = build_parser().parse_args(argv)

    app_cfg = ConfigManager(args.config).get_config()
    if args.bridge_url:
        app_cfg.bridge.base_url = args.bridge_url
    if args.ai_url:
        app_cfg.ai.base_url = args.ai_url
    if args.delivery:
        app_cfg.dispatch.delivery = args.delivery
    if args.chat_area:
        app_cfg.capture.chat_area = args.chat_area

    LoggingManager().setup(app_cfg, level_override=args.log_level)
    logger = logging.getLogger(__name__)

    default_bounds = None
    if app_cfg.capture.chat_area:
        try:
            default_bounds = CaptureBounds.parse(app_cfg.capture.chat_area)
        except ValueError as e:
            logger.warning("Invalid --chat-area value '%s': %s", app_cfg.capture.chat_area, e)

    status = StatusBoard(logging.getLogger("status"))
    bridge = BridgeClient(app_cfg.bridge)
    delivery = ReplyDelivery(
        mode=app_cfg.dispatch.delivery,
        input_simulator=InputSimulator(app_cfg.input),
        bridge=bridge,
        synthesizer=ReplyCoordinateSynthesizer(app_cfg.reply),
        default_bounds=default_bounds,
    )
    dispatcher = ConversationDispatchQueue(
        AIClient(app_cfg.ai),
        delivery=delivery,
        status=status,
        config=app_cfg.dispatch,
        on_auth_failure=lambda: status.set_status("登录状态失效，请重新登录"),
    )
    monitor = MonitorController(bridge, dispatcher, app_cfg.monitor, status)

    monitor.start()
    logger.info("Monitoring %s (delivery=%s)", app_cfg.bridge.base_url, app_cfg.dispatch.delivery)
    started = time.monotonic()
    try:
        while monitor.is_running:
            if args.duration is not None and time.monotonic() - started >= args.duration:
                break
            time.sleep(0.2)
    except KeyboardInterrupt:
        logger.info("收到中断信号，正在停止监控")
    finally:
        monitor.stop()
        if not dispatcher.drain(timeout=app_cfg.dispatch.ai_timeout_seconds + app_cfg.dispatch.delivery_timeout_seconds):
            logger.warning("仍有 %d 条消息未处理完成", dispatcher.pending)
        dispatcher.shutdown(wait=False)

    last = status.last_auto_reply
    if last is not None:
        logger.info("Last auto-reply: %s -> %s", last.contact, last.text)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
