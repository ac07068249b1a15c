import argparse
import json
import logging

from controllers.capture_controller import CaptureReplyController
from services.ai_client import AIClient
from services.config_manager import ConfigManager
from services.dispatch_queue import ConversationDispatchQueue
from services.input_simulator import InputSimulator
from services.logging_manager import LoggingManager
from services.reply_coordinates import ReplyCoordinateSynthesizer
from services.reply_delivery import ReplyDelivery
from ui.status_board import StatusBoard


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="WeChatAutoReply screen-capture reply")
    parser.add_argument("--config", help="path to config.yaml / config.json")
    parser.add_argument("--chat-area", help="chat area override as 'x,y,w,h' (default: locate window by title)")
    parser.add_argument("--window-title", help="window title substring used when --chat-area is not given")
    parser.add_argument("--once", action="store_true", help="run a single capture cycle and exit")
    parser.add_argument("--interval", type=float, help="seconds between capture cycles")
    parser.add_argument("--max-cycles", type=int, help="stop watching after N capture cycles")
    parser.add_argument("--contact", help="contact label used for dedup/cooldown bookkeeping")
    parser.add_argument("--ocr-engine", choices=["paddleocr", "paddleocr_json"], help="override OCR engine")
    parser.add_argument("--dry-run", action="store_true", help="print extracted text/speaker/plan without replying")
    parser.add_argument("--log-level", help="override log level (DEBUG/INFO/WARNING/ERROR)")
    return parser


def _print_cycle(cycle, delivery: ReplyDelivery) -> None:
    if cycle.error:
        print(cycle.error)
        return
    if cycle.extraction is None:
        print("no new text")
        return
    ext = cycle.extraction
    out = {
        "full_text": ext.full_text,
        "last_inbound": ext.last_inbound,
        "speaker": ext.speaker.value,
    }
    if cycle.message is not None:
        out["plan"] = delivery.plan("<reply>", cycle.message.capture).to_payload()
    print(json.dumps(out, ensure_ascii=False, indent=2))


def main(argv=None) -> int:
    """
    截图识别回复 CLI 入口。

    函数级注释：
    - --dry-run 时不创建 AI 客户端与派发队列，仅打印识别文本、发言者与点击坐标方案；
    - 否则每轮识别结果同步进入派发队列（去重与冷却规则同监控模式）；
    - --once 只运行一轮，否则按 --interval 循环直到 Ctrl+C 或达到 --max-cycles；
    - --dry-run 在循环模式下每轮都打印识别结果。
    """
    args = build_parser().parse_args(argv)

    app_cfg = ConfigManager(args.config).get_config()
    if args.chat_area:
        app_cfg.capture.chat_area = args.chat_area
    if args.window_title:
        app_cfg.capture.window_title = args.window_title
    if args.interval is not None:
        app_cfg.capture.interval_seconds = args.interval
    if args.contact:
        app_cfg.capture.contact_label = args.contact
    if args.ocr_engine:
        app_cfg.ocr.engine = args.ocr_engine

    LoggingManager().setup(app_cfg, level_override=args.log_level)
    logger = logging.getLogger(__name__)

    status = StatusBoard(logging.getLogger("status"))
    delivery = ReplyDelivery(
        mode="input",
        input_simulator=InputSimulator(app_cfg.input),
        synthesizer=ReplyCoordinateSynthesizer(app_cfg.reply),
    )
    dispatcher = None
    if not args.dry_run:
        dispatcher = ConversationDispatchQueue(
            AIClient(app_cfg.ai),
            delivery=delivery,
            status=status,
            config=app_cfg.dispatch,
        )
    controller = CaptureReplyController(
        app_cfg, dispatcher=dispatcher, status=status, synchronous=True,
    )

    try:
        if args.once:
            cycle = controller.run_once()
            if args.dry_run:
                _print_cycle(cycle, delivery)
        else:
            logger.info("Watching chat area every %.1fs", app_cfg.capture.interval_seconds)
            on_cycle = (lambda c: _print_cycle(c, delivery)) if args.dry_run else None
            controller.watch(max_cycles=args.max_cycles, on_cycle=on_cycle)
    except KeyboardInterrupt:
        logger.info("收到中断信号，停止截图识别")
        controller.stop()
    finally:
        if dispatcher is not None:
            dispatcher.shutdown(wait=False)

    last = status.last_auto_reply
    if last is not None:
        logger.info("Last auto-reply: %s -> %s", last.contact, last.text)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
