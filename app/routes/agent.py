from flask import Blueprint, request, jsonify
from app.services.agent_tools import (
    AgentBookingTool, AgentContext, agent_schedule_context, execute_tool, tool_definitions
)
from app.services.exceptions import NotFoundError
from app.middleware.auth import require_auth, require_agent
from app.utils.logger import get_logger

bp = Blueprint('agent', __name__)
logger = get_logger(__name__)
booking_tool = AgentBookingTool()


@bp.route('/tools', methods=['GET'])
@require_auth
@require_agent
def list_tools(current_user):
    """Function-calling definitions for the chat model"""
    return jsonify({'tools': tool_definitions()}), 200


@bp.route('/tools/<name>', methods=['POST'])
@require_auth
@require_agent
def run_tool(name, current_user):
    """Execute one tool call for a conversation"""
    try:
        data = request.get_json() or {}
        ctx = data.get('context') or {}

        cleaner_id = ctx.get('cleaner_id')
        if not cleaner_id:
            return jsonify({'error': 'context.cleaner_id is required'}), 400

        context = AgentContext(
            cleaner_id=int(cleaner_id),
            owner_id=ctx.get('owner_id'),
            conversation_id=ctx.get('conversation_id'),
            property_id=ctx.get('property_id'),
            owner_name=ctx.get('owner_name')
        )

        result = execute_tool(name, data.get('arguments'), context, tool=booking_tool)
        logger.info(f"Agent tool {name} for cleaner {cleaner_id}: success={result.success}")

        return jsonify(result.to_dict()), 200

    except NotFoundError as e:
        return jsonify({'error': str(e)}), 404
    except Exception as e:
        logger.error(f"Error running agent tool {name}: {str(e)}")
        return jsonify({'error': 'Failed to run tool'}), 500


@bp.route('/context/<int:cleaner_id>', methods=['GET'])
@require_auth
@require_agent
def schedule_context(cleaner_id, current_user):
    """Busy and open dates to put in the agent prompt"""
    try:
        return jsonify(agent_schedule_context(cleaner_id)), 200

    except NotFoundError as e:
        return jsonify({'error': str(e)}), 404
    except Exception as e:
        logger.error(f"Error building agent context: {str(e)}")
        return jsonify({'error': 'Failed to build schedule context'}), 500
